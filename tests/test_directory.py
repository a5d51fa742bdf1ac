from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from ldap3 import MOCK_SYNC, OFFLINE_AD_2012_R2, Connection, Server
from ldap3.core.exceptions import LDAPException

from daclhound.config import LDAPConfig
from daclhound.ingestion.directory import (
    DirectoryEntry, LDAPDirectory, PAGED_RESULTS_OID, classify_entry
)
from daclhound.ingestion.pipeline import ACL_ATTRIBUTES
from daclhound.model.schemas import ObjectType
from conftest import DOMAIN_SID, sid_bytes


USER_SID = f"{DOMAIN_SID}-1104"
SPN_GUID = "f3a64788-5306-11d1-a9c5-0000f80367c1"


def ldap_entry(dn, attributes=None, raw=None):
    return SimpleNamespace(entry_dn=dn, entry_attributes_as_dict=attributes or {},
                           entry_raw_attributes=raw or {})


def paged_connection(pages):
    """A mock ldap3 connection that serves ``pages`` one search at a time."""
    connection = MagicMock()
    connection.server.info = None
    connection.server.schema = None
    remaining = list(pages)

    def search(**kwargs):
        entries, cookie = remaining.pop(0)
        connection.entries = entries
        connection.result = {
            'result': 0,
            'description': 'success',
            'controls': {PAGED_RESULTS_OID: {'value': {'cookie': cookie}}},
        }
        return True

    connection.search.side_effect = search
    return connection


def test_entry_names_are_case_insensitive():
    entry = DirectoryEntry("CN=alice", {"sAMAccountName": "alice", "objectClass": ["top", "user"]})

    assert entry.has("samaccountname")
    assert entry.get_string("SAMACCOUNTNAME") == "alice"
    assert entry.get_strings("objectclass") == ["top", "user"]
    assert not entry.has("description")
    assert entry.get_string("description") is None


def test_entry_prefers_raw_bytes():
    entry = DirectoryEntry("CN=alice", {"objectSid": USER_SID}, {"objectSid": [sid_bytes(USER_SID)]})

    assert entry.get_bytes("objectsid") == sid_bytes(USER_SID)
    assert entry.get_sid() == USER_SID


def test_entry_sid_from_string_value():
    entry = DirectoryEntry("CN=alice", {"objectSid": USER_SID.lower()})

    assert entry.get_sid() == USER_SID


def test_entry_without_sid():
    assert DirectoryEntry("OU=x", {}).get_sid() is None


@pytest.mark.parametrize("attributes, expected", [
    ({"sAMAccountType": 805306368}, ObjectType.USER),
    ({"sAMAccountType": "805306369"}, ObjectType.COMPUTER),
    ({"sAMAccountType": 536870912}, ObjectType.GROUP),
    ({"objectClass": ["top", "person", "user", "computer"]}, ObjectType.COMPUTER),
    ({"objectClass": ["top", "domain", "domainDNS"]}, ObjectType.DOMAIN),
    ({"objectClass": ["top", "container", "groupPolicyContainer"]}, ObjectType.GPO),
    ({"objectClass": ["top", "organizationalUnit"]}, ObjectType.OU),
    ({"objectClass": ["top", "container"]}, ObjectType.UNKNOWN),
])
def test_classify_entry(attributes, expected):
    assert classify_entry(DirectoryEntry("CN=x", attributes)) == expected


def test_query_follows_paging_cookie():
    connection = paged_connection([
        ([ldap_entry("CN=a", {"name": "a"}), ldap_entry("CN=b", {"name": "b"})], b"next"),
        ([ldap_entry("CN=c", {"name": "c"})], b""),
    ])
    directory = LDAPDirectory({"CORP.local": connection}, config=LDAPConfig(page_size=2), verbose=False)

    entries = list(directory.query("corp.local", "(objectClass=*)", ["name"]))

    assert [e.distinguished_name for e in entries] == ["CN=a", "CN=b", "CN=c"]
    first_call, second_call = connection.search.call_args_list
    assert first_call.kwargs["search_base"] == "DC=corp,DC=local"
    assert first_call.kwargs["paged_size"] == 2
    assert first_call.kwargs["paged_cookie"] is None
    assert first_call.kwargs["controls"] is None
    assert second_call.kwargs["paged_cookie"] == b"next"


def test_query_requests_security_descriptor_control():
    connection = paged_connection([([], None)])
    directory = LDAPDirectory({"corp.local": connection}, verbose=False)

    list(directory.query("corp.local", "(objectClass=user)", ["nTSecurityDescriptor"]))

    assert connection.search.call_args.kwargs["controls"] is not None


def test_query_raises_on_failed_search():
    connection = MagicMock()
    connection.entries = []
    connection.server.schema = None
    connection.result = {'result': 51, 'description': 'busy'}
    directory = LDAPDirectory({"corp.local": connection}, verbose=False)

    with pytest.raises(LDAPException):
        list(directory.query("corp.local", "(objectClass=*)", ["name"]))


def test_query_unknown_domain_raises():
    directory = LDAPDirectory({}, verbose=False)

    with pytest.raises(LDAPException):
        list(directory.query("nowhere.local", "(objectClass=*)", ["name"]))


def test_lookup_sid_type_searches_domains():
    empty = paged_connection([([], None)])
    found = paged_connection([([ldap_entry("CN=web01", {"sAMAccountType": 805306369})], None)])
    directory = LDAPDirectory({"corp.local": empty, "child.corp.local": found}, verbose=False)

    assert directory.lookup_sid_type(USER_SID) == ObjectType.COMPUTER
    assert empty.search.call_args.kwargs["search_filter"] == f"(objectSid={USER_SID})"


def test_lookup_sid_type_not_found():
    directory = LDAPDirectory({"corp.local": paged_connection([([], None)])}, verbose=False)

    assert directory.lookup_sid_type(USER_SID) is None


def test_schema_names_are_cached():
    connection = paged_connection([([ldap_entry("CN=SPN", {"lDAPDisplayName": "servicePrincipalName"})], None)])
    directory = LDAPDirectory({"corp.local": connection}, verbose=False)

    assert directory.get_name_from_guid("corp.local", SPN_GUID) == "servicePrincipalName"
    assert directory.get_name_from_guid("CORP.LOCAL", SPN_GUID.upper()) == "servicePrincipalName"

    assert connection.search.call_count == 1
    kwargs = connection.search.call_args.kwargs
    assert kwargs["search_base"] == "CN=Schema,CN=Configuration,DC=corp,DC=local"
    assert kwargs["search_filter"].startswith("(schemaIDGUID=\\88\\47\\a6\\f3")


def test_disconnect_unbinds_every_connection():
    first, second = MagicMock(), MagicMock()
    second.unbind.side_effect = LDAPException("already closed")
    messages = []
    directory = LDAPDirectory({"a.local": first, "b.local": second}, verbose=False,
                              progress_callback=messages.append)

    directory.disconnect()

    first.unbind.assert_called_once()
    second.unbind.assert_called_once()
    assert any("b.local" in m for m in messages)


def test_attributes_missing_from_schema_are_not_requested():
    server = Server('dc01.corp.local', get_info=OFFLINE_AD_2012_R2)
    connection = Connection(server, client_strategy=MOCK_SYNC)
    for i in range(5):
        connection.strategy.add_entry(f"CN=user{i},CN=Users,DC=corp,DC=local", {
            'objectClass': ['top', 'person', 'organizationalPerson', 'user'],
            'sAMAccountName': f"user{i}",
        })
    connection.bind()
    messages = []
    directory = LDAPDirectory({"corp.local": connection}, config=LDAPConfig(page_size=2), verbose=False,
                              progress_callback=messages.append)

    entries = list(directory.query("corp.local", "(objectClass=user)", ACL_ATTRIBUTES))
    list(directory.query("corp.local", "(objectClass=user)", ACL_ATTRIBUTES))

    assert sorted(e.get_string("samaccountname") for e in entries) == [f"user{i}" for i in range(5)]
    assert messages == [
        "[!] Attribute ms-Mcs-AdmPwdExpirationTime not in the schema of corp.local, not requesting it"
    ]


def test_schema_filter_keeps_known_and_wildcard_attributes():
    connection = paged_connection([([], None)])
    connection.server.schema = SimpleNamespace(attribute_types={"objectSid": object(), "name": object()})
    directory = LDAPDirectory({"corp.local": connection}, verbose=False)

    list(directory.query("corp.local", "(objectClass=*)", ["objectSid", "name", "*", "ms-Mcs-AdmPwd"]))

    assert connection.search.call_args.kwargs["attributes"] == ["objectSid", "name", "*"]
