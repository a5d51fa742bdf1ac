"""
Directory Adapter
=================

Read-only access to Active Directory for the collection pipeline.

Features:
- Paged LDAP queries streamed as DirectoryEntry objects
- SD_FLAGS control so nTSecurityDescriptor comes back readable
- SID -> principal type lookups for the SID resolver
- Schema GUID -> attribute name lookups with a per-run cache

Design Decisions:
-----------------
1. Uses ldap3 for cross-platform LDAP support
2. Connections are bound by the caller; this module never authenticates
3. Each connection is guarded by a lock held for one page at a time, so
   SID lookups from workers interleave with long-running streaming queries
4. DirectoryEntry normalises attribute names to lower case

Security Consideration:
This module performs read-only operations. No modifications are made to the AD.
"""

import threading
import uuid
from typing import Callable, Iterator, Optional

from ldap3 import BASE, LEVEL, SUBTREE
from ldap3.core.exceptions import LDAPException
from ldap3.protocol.microsoft import security_descriptor_control
from ldap3.utils.conv import escape_bytes

from ..acl.descriptor import convert_sid, ParseError
from ..config import LDAPConfig
from ..model.schemas import ObjectType


PAGED_RESULTS_OID = '1.2.840.113556.1.4.319'

SCOPES = {
    'base': BASE,
    'level': LEVEL,
    'one': LEVEL,
    'subtree': SUBTREE,
}

# sAMAccountType values
SAM_ACCOUNT_TYPES = {
    805306368: ObjectType.USER,       # SAM_USER_OBJECT
    805306369: ObjectType.COMPUTER,   # SAM_MACHINE_ACCOUNT
    805306370: ObjectType.USER,       # SAM_TRUST_ACCOUNT
    268435456: ObjectType.GROUP,      # SAM_GROUP_OBJECT
    268435457: ObjectType.GROUP,      # SAM_NON_SECURITY_GROUP_OBJECT
    536870912: ObjectType.GROUP,      # SAM_ALIAS_OBJECT
    536870913: ObjectType.GROUP,      # SAM_NON_SECURITY_ALIAS_OBJECT
}

OBJECT_CLASSES = {
    'domain': ObjectType.DOMAIN,
    'domaindns': ObjectType.DOMAIN,
    'grouppolicycontainer': ObjectType.GPO,
    'organizationalunit': ObjectType.OU,
}

SUCCESS = 0
SIZE_LIMIT_EXCEEDED = 4
NO_SUCH_OBJECT = 32


class DirectoryEntry:
    """One search result entry.

    Args:
        distinguished_name: Entry DN
        attributes: Decoded attribute values (name -> list or scalar)
        raw_attributes: Undecoded attribute values (name -> list of bytes)
    """

    def __init__(
        self,
        distinguished_name: str,
        attributes: Optional[dict] = None,
        raw_attributes: Optional[dict] = None
    ):
        self.distinguished_name = distinguished_name
        self._values = {k.lower(): self._as_list(v) for k, v in (attributes or {}).items()}
        self._raw = {k.lower(): self._as_list(v) for k, v in (raw_attributes or {}).items()}

    @staticmethod
    def _as_list(value) -> list:
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return list(value)
        return [value]

    def __repr__(self) -> str:
        return f"DirectoryEntry({self.distinguished_name!r})"

    def has(self, name: str) -> bool:
        """Whether the entry carries a non-empty value for ``name``."""
        name = name.lower()
        return bool(self._values.get(name) or self._raw.get(name))

    def get_bytes(self, name: str) -> Optional[bytes]:
        """First value of ``name`` as bytes, or None."""
        name = name.lower()
        for value in self._raw.get(name, []) + self._values.get(name, []):
            if isinstance(value, (bytes, bytearray)):
                return bytes(value)
        return None

    def get_string(self, name: str) -> Optional[str]:
        """First value of ``name`` as a string, or None."""
        values = self.get_strings(name)
        return values[0] if values else None

    def get_strings(self, name: str) -> list:
        """All values of ``name`` as strings."""
        name = name.lower()
        values = self._values.get(name) or self._raw.get(name, [])
        result = []
        for value in values:
            if isinstance(value, (bytes, bytearray)):
                try:
                    value = bytes(value).decode('utf-8')
                except UnicodeDecodeError:
                    continue
            result.append(str(value))
        return result

    def get_sid(self) -> Optional[str]:
        """The entry's objectSid in string form, or None.

        objectSid can come back as bytes or as a string depending on the
        schema information the connection has loaded.
        """
        sid_bytes = self.get_bytes('objectsid')
        if sid_bytes:
            try:
                return convert_sid(sid_bytes)
            except ParseError:
                return None

        sid = self.get_string('objectsid')
        if sid and sid.upper().startswith('S-'):
            return sid.upper()
        return None


def classify_entry(entry: DirectoryEntry) -> ObjectType:
    """Determine the object type of a directory entry.

    sAMAccountType identifies security principals; objectClass covers the
    containers that have no account type.
    """
    account_type = entry.get_string('samaccounttype')
    if account_type:
        try:
            object_type = SAM_ACCOUNT_TYPES.get(int(account_type))
        except ValueError:
            object_type = None
        if object_type:
            return object_type

    classes = [c.lower() for c in entry.get_strings('objectclass')]
    # Computers also carry the user class
    if 'computer' in classes:
        return ObjectType.COMPUTER
    if 'group' in classes:
        return ObjectType.GROUP
    if 'user' in classes:
        return ObjectType.USER
    for object_class in classes:
        if object_class in OBJECT_CLASSES:
            return OBJECT_CLASSES[object_class]

    return ObjectType.UNKNOWN


class LDAPDirectory:
    """ldap3-backed directory for one or more domains.

    Usage:
        directory = LDAPDirectory({"corp.local": connection})
        for entry in directory.query("corp.local", "(objectClass=user)", ["objectSid"]):
            ...

    Args:
        connections: Domain name -> bound ldap3 Connection
        config: LDAPConfig for paging and SD flags
        verbose: Whether to print progress messages
        progress_callback: Optional callback for progress updates
    """

    def __init__(
        self,
        connections: dict,
        config: Optional[LDAPConfig] = None,
        verbose: bool = True,
        progress_callback: Optional[Callable[[str], None]] = None
    ):
        self.connections = {domain.lower(): conn for domain, conn in connections.items()}
        self.config = config or LDAPConfig()
        self.verbose = verbose
        self.progress_callback = progress_callback

        self._locks = {domain: threading.Lock() for domain in self.connections}
        self._schema_cache: dict[tuple, Optional[str]] = {}
        self._schema_lock = threading.Lock()
        self._missing_logged: set[tuple] = set()

    def _log(self, message: str) -> None:
        """Log a message to console and/or callback."""
        if self.verbose:
            print(message)
        if self.progress_callback:
            self.progress_callback(message)

    @property
    def domains(self) -> list:
        return list(self.connections)

    @staticmethod
    def base_dn(domain: str) -> str:
        """Derive base DN from domain name."""
        return ",".join([f"DC={part}" for part in domain.split(".")])

    def _connection(self, domain: str):
        key = domain.lower()
        if key not in self.connections:
            raise LDAPException(f"No connection for domain {domain}")
        return self.connections[key], self._locks[key]

    def _schema_attributes(self, domain: str, connection, attributes: list) -> list:
        """Drop requested attributes the loaded schema does not define.

        ldap3 rejects unknown attribute names when schema information is
        loaded, and optional extensions such as LAPS (ms-Mcs-AdmPwd*) only
        exist on forests that installed them.
        """
        schema = getattr(connection.server, 'schema', None)
        attribute_types = getattr(schema, 'attribute_types', None) if schema is not None else None
        if not attribute_types:
            return list(attributes)

        kept = []
        for attribute in attributes:
            if attribute.startswith(('*', '+')) or attribute.split(';')[0] in attribute_types:
                kept.append(attribute)
                continue
            key = (domain.lower(), attribute.lower())
            with self._schema_lock:
                first_miss = key not in self._missing_logged
                self._missing_logged.add(key)
            if first_miss:
                self._log(f"[!] Attribute {attribute} not in the schema of {domain}, not requesting it")
        return kept

    def query(
        self,
        domain: str,
        ldap_filter: str,
        attributes: list,
        scope: str = 'subtree',
        search_base: Optional[str] = None
    ) -> Iterator[DirectoryEntry]:
        """Stream the entries matching ``ldap_filter`` one page at a time.

        The returned generator is lazy, finite and cannot be restarted.

        Raises:
            LDAPException: On connection loss or a failed search
        """
        connection, lock = self._connection(domain)
        search_base = search_base or self.base_dn(domain)
        attributes = self._schema_attributes(domain, connection, attributes)

        controls = None
        if any(a.lower() == 'ntsecuritydescriptor' for a in attributes):
            controls = security_descriptor_control(sdflags=self.config.sd_flags)

        cookie = None
        while True:
            with lock:
                connection.search(
                    search_base=search_base,
                    search_filter=ldap_filter,
                    search_scope=SCOPES.get(scope, SUBTREE),
                    attributes=attributes,
                    controls=controls,
                    paged_size=self.config.page_size,
                    paged_cookie=cookie,
                    time_limit=self.config.timeout
                )
                result = connection.result or {}
                code = result.get('result', SUCCESS)
                if code not in (SUCCESS, SIZE_LIMIT_EXCEEDED, NO_SUCH_OBJECT):
                    raise LDAPException(
                        f"Search {ldap_filter} on {domain} failed: {result.get('description')}"
                    )
                page = [
                    DirectoryEntry(
                        str(entry.entry_dn),
                        entry.entry_attributes_as_dict,
                        entry.entry_raw_attributes
                    )
                    for entry in connection.entries
                ]
                cookie = (
                    result.get('controls', {})
                    .get(PAGED_RESULTS_OID, {})
                    .get('value', {})
                    .get('cookie')
                )

            yield from page

            if not cookie:
                break

    def lookup_sid_type(self, sid: str) -> Optional[ObjectType]:
        """Find the object owning ``sid`` in any connected domain.

        Returns:
            ObjectType of the object, or None if no domain knows the SID
        """
        for domain in self.domains:
            for entry in self.query(domain, f"(objectSid={sid})", ['samaccounttype', 'objectclass']):
                return classify_entry(entry)
        return None

    def get_name_from_guid(self, domain: str, guid: str) -> Optional[str]:
        """Map a schemaIDGUID to the lDAPDisplayName of the attribute or class.

        Results (including misses) are cached for the run.
        """
        key = (domain.lower(), guid.lower())
        with self._schema_lock:
            if key in self._schema_cache:
                return self._schema_cache[key]

        connection, _ = self._connection(domain)
        schema_base = None
        server_info = getattr(connection.server, 'info', None)
        if server_info is not None and server_info.other:
            schema_nc = server_info.other.get('schemaNamingContext')
            if schema_nc:
                schema_base = schema_nc[0]
        if not schema_base:
            schema_base = f"CN=Schema,CN=Configuration,{self.base_dn(domain)}"

        guid_filter = f"(schemaIDGUID={escape_bytes(uuid.UUID(guid).bytes_le)})"
        name = None
        for entry in self.query(domain, guid_filter, ['ldapDisplayName'], 'subtree', search_base=schema_base):
            name = entry.get_string('ldapdisplayname')
            break

        with self._schema_lock:
            self._schema_cache[key] = name
        return name

    def disconnect(self) -> None:
        """Close every LDAP connection."""
        for domain, connection in self.connections.items():
            try:
                connection.unbind()
            except LDAPException as e:
                self._log(f"[!] Error closing connection to {domain}: {e}")
