"""
ACE Classifier
==============

Turns a directory object's security descriptor into AccessEdge records.

Processing order per object:
1. Owner edge
2. Each DACL entry in order: skip deny and non-applicable entries, then map
   the access mask to rights, with extended rights and property writes
   interpreted per object type
3. Deduplicate the accumulated edges by value

GenericAll on an entry short-circuits the remaining rules for that entry,
since it implies every other right.
"""

from typing import Callable, Optional

from ..model.schemas import DirectoryObject, AccessEdge, AccessControlEntry, ObjectType
from .descriptor import SecurityDescriptorParser, ParseError
from .sid_resolver import SidResolver
from .tables import (
    SCHEMA_GUIDS, STRUCTURAL_SIDS, ALL_GUID, is_all_guid,
    ADS_GENERIC_ALL, GENERIC_ALL_BIT, ADS_GENERIC_WRITE, GENERIC_WRITE_BIT,
    ADS_RIGHT_DS_WRITE_PROP, ADS_RIGHT_DS_CONTROL_ACCESS, WRITE_DAC, WRITE_OWNER,
    DS_REPLICATION_GET_CHANGES, DS_REPLICATION_GET_CHANGES_ALL,
    USER_FORCE_CHANGE_PASSWORD, SERVICE_PRINCIPAL_NAME, MEMBER_ATTRIBUTE,
    ALLOWED_TO_ACT, LAPS_PASSWORD_ATTRIBUTE, LAPS_EXPIRATION_ATTRIBUTE
)


SECURITY_DESCRIPTOR_ATTRIBUTE = 'ntsecuritydescriptor'

# (object type, property GUID) -> WriteProperty sub-type
PROPERTY_WRITES = {
    (ObjectType.USER, SERVICE_PRINCIPAL_NAME): "WriteSPN",
    (ObjectType.GROUP, MEMBER_ATTRIBUTE): "AddMember",
    (ObjectType.COMPUTER, ALLOWED_TO_ACT): "AllowedToAct",
}


def process_sid(sid: Optional[str]) -> Optional[str]:
    """Drop Local System, Creator Owner and Principal Self; upper-case the rest."""
    if not sid:
        return None
    sid = sid.upper()
    if sid in STRUCTURAL_SIDS:
        return None
    return sid


def is_ace_applicable(ace: AccessControlEntry, schema_guid: Optional[str]) -> bool:
    """Check whether an ACE actually applies to the object it sits on.

    An inherited ACE applies when its inherited object type is all-zero or
    the object's class. A non-inherited ACE applies unless it is inherit-only.
    """
    if ace.is_inherited:
        inherited_type = ace.inherited_object_type or ALL_GUID
        return inherited_type == ALL_GUID or inherited_type == schema_guid

    if ace.is_inherit_only:
        return False

    return True


class AceClassifier:
    """Worker stage producing the ACL edges of a DirectoryObject.

    Usage:
        classifier = AceClassifier(SidResolver(directory.lookup_sid_type),
                                   schema_resolver=directory.get_name_from_guid)
        obj = classifier.process(obj)
        obj.aces  # [AccessEdge(...), ...]

    Args:
        sid_resolver: Shared SidResolver
        schema_resolver: Callable (domain, guid) -> attribute name or None,
            used for the LAPS check on computers
        parser: Security descriptor parser
        debug: Log objects whose descriptor could not be parsed
    """

    def __init__(
        self,
        sid_resolver: SidResolver,
        schema_resolver: Optional[Callable[[str, str], Optional[str]]] = None,
        parser: Optional[SecurityDescriptorParser] = None,
        debug: bool = False,
        progress_callback: Optional[Callable[[str], None]] = None
    ):
        self.sid_resolver = sid_resolver
        self.schema_resolver = schema_resolver
        self.parser = parser or SecurityDescriptorParser()
        self.debug = debug
        self.progress_callback = progress_callback

    def _log(self, message: str) -> None:
        """Log a message to console and/or callback."""
        if self.debug:
            print(message)
        if self.progress_callback:
            self.progress_callback(message)

    def __call__(self, obj: DirectoryObject) -> DirectoryObject:
        return self.process(obj)

    def process(self, obj: DirectoryObject) -> DirectoryObject:
        """Attach the deduplicated ACL edges to ``obj``.

        An absent descriptor leaves the object unchanged. A malformed one
        leaves it with no edges.
        """
        sd_bytes = None
        if obj.attributes is not None:
            sd_bytes = obj.attributes.get_bytes(SECURITY_DESCRIPTOR_ATTRIBUTE)

        try:
            descriptor = self.parser.parse(sd_bytes)
        except ParseError as e:
            self._log(f"[!] Unparseable security descriptor on {obj.distinguished_name or obj.object_id}: {e}")
            obj.aces = []
            return obj

        if descriptor is None:
            return obj

        edges = []

        owner_sid = process_sid(descriptor.owner_sid)
        if owner_sid:
            principal_sid, principal_type = self.sid_resolver.canonicalize(owner_sid, obj.domain)
            edges.append(AccessEdge(
                principal_sid=principal_sid,
                principal_type=principal_type,
                right_name="Owner",
                ace_type="",
                is_inherited=False
            ))

        schema_guid = SCHEMA_GUIDS.get(obj.object_type)
        for ace in descriptor.aces:
            if ace is None or ace.is_deny:
                continue
            if not is_ace_applicable(ace, schema_guid):
                continue

            principal = process_sid(ace.sid)
            if principal is None:
                continue

            principal_sid, principal_type = self.sid_resolver.canonicalize(principal, obj.domain)
            edges.extend(self._classify_ace(obj, ace, principal_sid, principal_type))

        obj.aces = list(dict.fromkeys(edges))
        return obj

    def _classify_ace(
        self,
        obj: DirectoryObject,
        ace: AccessControlEntry,
        principal_sid: str,
        principal_type: ObjectType
    ) -> list:
        """Map one applicable ACE to its edges."""
        edges = []
        object_ace_type = ace.object_type
        is_inherited = ace.is_inherited

        def emit(right_name: str, ace_type: str = "") -> None:
            edges.append(AccessEdge(
                principal_sid=principal_sid,
                principal_type=principal_type,
                right_name=right_name,
                ace_type=ace_type,
                is_inherited=is_inherited
            ))

        if ace.has_right(ADS_GENERIC_ALL) or ace.has_right(GENERIC_ALL_BIT):
            if is_all_guid(object_ace_type):
                emit("GenericAll")
            return edges

        # WriteDacl and WriteOwner are useful regardless of object type
        if ace.has_right(WRITE_DAC):
            emit("WriteDacl")

        if ace.has_right(WRITE_OWNER):
            emit("WriteOwner")

        if ace.has_right(ADS_RIGHT_DS_CONTROL_ACCESS):
            self._classify_extended_right(obj, object_ace_type, emit)

        # GenericWrite includes WriteProperty; checked together to avoid duplicates
        if (ace.has_right(ADS_GENERIC_WRITE) or ace.has_right(GENERIC_WRITE_BIT)
                or ace.has_right(ADS_RIGHT_DS_WRITE_PROP)):
            if is_all_guid(object_ace_type):
                emit("GenericWrite")

            property_write = PROPERTY_WRITES.get((obj.object_type, object_ace_type))
            if property_write:
                emit("WriteProperty", property_write)

        return edges

    def _classify_extended_right(self, obj: DirectoryObject, object_ace_type: Optional[str], emit) -> None:
        """Extended rights only mean something on domains, users and computers."""
        if obj.object_type == ObjectType.DOMAIN:
            if object_ace_type == DS_REPLICATION_GET_CHANGES:
                emit("ExtendedRight", "GetChanges")
            elif object_ace_type == DS_REPLICATION_GET_CHANGES_ALL:
                emit("ExtendedRight", "GetChangesAll")
            elif is_all_guid(object_ace_type):
                emit("ExtendedRight", "All")

        elif obj.object_type == ObjectType.USER:
            if object_ace_type == USER_FORCE_CHANGE_PASSWORD:
                emit("ExtendedRight", "User-Force-Change-Password")
            elif is_all_guid(object_ace_type):
                emit("ExtendedRight", "All")

        elif obj.object_type == ObjectType.COMPUTER:
            if obj.attributes is None or not obj.attributes.has(LAPS_EXPIRATION_ATTRIBUTE):
                return
            if is_all_guid(object_ace_type):
                emit("ExtendedRight", "All")
            elif self._resolve_schema_name(obj.domain, object_ace_type) == LAPS_PASSWORD_ATTRIBUTE:
                emit("ReadLAPSPassword")

    def _resolve_schema_name(self, domain: str, guid: str) -> Optional[str]:
        if self.schema_resolver is None:
            return None
        try:
            return self.schema_resolver(domain, guid)
        except Exception as e:
            self._log(f"[!] Schema lookup for {guid} in {domain} failed: {e}")
            return None
