import struct
import threading
import uuid

import pytest

from daclhound.acl.sid_resolver import SidResolver
from daclhound.acl.tables import DC_LDAP_FILTER
from daclhound.config import CollectorConfig, PipelineConfig, get_config, set_config
from daclhound.ingestion.directory import DirectoryEntry
from daclhound.model.schemas import ObjectType


DOMAIN = "corp.local"
DOMAIN_SID = "S-1-5-21-1004336348-1177238915-682003330"

USER_ACCOUNT = 805306368
COMPUTER_ACCOUNT = 805306369
GROUP_ACCOUNT = 268435456


def sid_bytes(sid: str) -> bytes:
    parts = sid.split("-")
    revision = int(parts[1])
    authority = int(parts[2])
    sub_auths = [int(p) for p in parts[3:]]
    return (
        bytes([revision, len(sub_auths)])
        + authority.to_bytes(6, "big")
        + b"".join(struct.pack("<I", s) for s in sub_auths)
    )


def guid_bytes(guid: str) -> bytes:
    return uuid.UUID(guid).bytes_le


def ace(sid, mask, ace_type=0, flags=0, object_type=None, inherited_object_type=None) -> bytes:
    """Build one binary ACE. Types 5/6 are object ACEs."""
    if ace_type in (5, 6):
        object_flags = 0
        guids = b""
        if object_type:
            object_flags |= 0x01
            guids += guid_bytes(object_type)
        if inherited_object_type:
            object_flags |= 0x02
            guids += guid_bytes(inherited_object_type)
        body = struct.pack("<II", mask, object_flags) + guids + sid_bytes(sid)
    else:
        body = struct.pack("<I", mask) + sid_bytes(sid)
    return struct.pack("<BBH", ace_type, flags, 4 + len(body)) + body


def security_descriptor(owner=None, group=None, aces=None, dacl_present=True) -> bytes:
    """Build a self-relative security descriptor."""
    control = 0x8000 | (0x0004 if dacl_present else 0)
    body = b""
    offset = 20

    owner_offset = 0
    if owner:
        owner_offset = offset
        body += sid_bytes(owner)
        offset = 20 + len(body)

    group_offset = 0
    if group:
        group_offset = offset
        body += sid_bytes(group)
        offset = 20 + len(body)

    dacl_offset = 0
    if dacl_present:
        dacl_offset = offset
        ace_blob = b"".join(aces or [])
        body += struct.pack("<BBHHH", 4, 0, 8 + len(ace_blob), len(aces or []), 0) + ace_blob

    header = struct.pack("<BBHIIII", 1, 0, control, owner_offset, group_offset, 0, dacl_offset)
    return header + body


def make_entry(sid=None, account_type=None, object_class=None, sd=None, dn=None, **extra) -> DirectoryEntry:
    attributes = {}
    if sid:
        attributes["objectSid"] = sid_bytes(sid)
    if account_type is not None:
        attributes["sAMAccountType"] = account_type
    if object_class:
        attributes["objectClass"] = object_class
    if sd is not None:
        attributes["nTSecurityDescriptor"] = sd
    attributes.update(extra)
    return DirectoryEntry(dn or f"CN={sid},DC=corp,DC=local", attributes)


class FakeDirectory:
    """In-memory stand-in for LDAPDirectory."""

    def __init__(self, entries=None, dcs=None, sid_types=None, schema_names=None, fail_after=None):
        self.entries = entries or {}
        self.dcs = dcs or {}
        self.sid_types = sid_types or {}
        self.schema_names = schema_names or {}
        self.fail_after = fail_after or {}
        self.lookups = []
        self.schema_lookups = []
        self._lock = threading.Lock()

    def query(self, domain, ldap_filter, attributes, scope="subtree"):
        if ldap_filter == DC_LDAP_FILTER:
            yield from self.dcs.get(domain, [])
            return
        for index, entry in enumerate(self.entries.get(domain, [])):
            if domain in self.fail_after and index >= self.fail_after[domain]:
                raise ConnectionError(f"connection to {domain} lost")
            yield entry

    def lookup_sid_type(self, sid):
        with self._lock:
            self.lookups.append(sid)
        return self.sid_types.get(sid)

    def get_name_from_guid(self, domain, guid):
        with self._lock:
            self.schema_lookups.append((domain, guid))
        return self.schema_names.get(guid)


@pytest.fixture(autouse=True)
def _restore_global_config():
    original = get_config()
    yield
    set_config(original)


@pytest.fixture
def quiet_config():
    return CollectorConfig(
        pipeline=PipelineConfig(queue_capacity=4, worker_count=3, put_timeout=0.05),
        verbose=False
    )


@pytest.fixture
def resolver():
    return SidResolver({
        f"{DOMAIN_SID}-1104": ObjectType.USER,
        f"{DOMAIN_SID}-512": ObjectType.GROUP,
        f"{DOMAIN_SID}-1000": ObjectType.COMPUTER,
    }.get)
