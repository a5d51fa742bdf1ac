"""
daclhound Data Schemas
======================

Typed dataclasses representing directory objects and the access-control
relationships extracted from their security descriptors.

Design Decisions:
-----------------
1. The object type is an explicit enum field on DirectoryObject; code that
   needs per-type behaviour switches on it instead of subclassing
2. AccessEdge is frozen so value equality and hashing come for free, which
   is what edge deduplication relies on
3. AccessControlEntry and SecurityDescriptor are transient parse results

Schema Overview:
- ObjectType: Kind of directory object, also used as an edge's principal type
- DirectoryObject: One classified directory entry plus its edges
- AccessEdge: A single principal -> object right
- AccessControlEntry: A decoded ACE
- SecurityDescriptor: A decoded owner + DACL
- DomainControllerRecord: Minimal DC identity kept by the registry
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Any


class ObjectType(Enum):
    """Types of Active Directory objects.

    Maps to BloodHound node labels for compatibility.
    """
    USER = "User"
    COMPUTER = "Computer"
    GROUP = "Group"
    DOMAIN = "Domain"
    GPO = "GPO"
    OU = "OU"
    UNKNOWN = "Unknown"


# ACE type bytes (MS-DTYP 2.4.4.1)
ACCESS_ALLOWED_ACE_TYPE = 0x00
ACCESS_DENIED_ACE_TYPE = 0x01
ACCESS_ALLOWED_OBJECT_ACE_TYPE = 0x05
ACCESS_DENIED_OBJECT_ACE_TYPE = 0x06

# ACE header flags
OBJECT_INHERIT_ACE = 0x01
CONTAINER_INHERIT_ACE = 0x02
NO_PROPAGATE_INHERIT_ACE = 0x04
INHERIT_ONLY_ACE = 0x08
INHERITED_ACE = 0x10


@dataclass(frozen=True)
class AccessEdge:
    """A principal's right over a directory object.

    Attributes:
        principal_sid: Canonical upper-case SID of the principal
        principal_type: Resolved type of the principal
        right_name: Right granted (GenericAll, WriteDacl, ExtendedRight, ...)
        ace_type: Sub-type discriminator ("", "GetChanges", "WriteSPN", ...)
        is_inherited: Whether the granting ACE was inherited
    """
    principal_sid: str
    principal_type: ObjectType
    right_name: str
    ace_type: str = ""
    is_inherited: bool = False

    def to_dict(self) -> dict:
        """Convert to the BloodHound ACE dictionary layout."""
        return {
            "PrincipalSID": self.principal_sid,
            "PrincipalType": self.principal_type.value,
            "RightName": self.right_name,
            "AceType": self.ace_type,
            "IsInherited": self.is_inherited,
        }


@dataclass
class AccessControlEntry:
    """A single decoded ACE from a DACL.

    Attributes:
        sid: Trustee SID as decoded from the ACE
        access_mask: Raw 32-bit access mask
        ace_type: Raw ACE type byte
        ace_flags: Raw ACE header flags
        object_type: Object type GUID (object ACEs only)
        inherited_object_type: Inherited object type GUID (object ACEs only)
    """
    sid: str
    access_mask: int
    ace_type: int = ACCESS_ALLOWED_ACE_TYPE
    ace_flags: int = 0
    object_type: Optional[str] = None
    inherited_object_type: Optional[str] = None

    @property
    def is_allow(self) -> bool:
        return self.ace_type in (ACCESS_ALLOWED_ACE_TYPE, ACCESS_ALLOWED_OBJECT_ACE_TYPE)

    @property
    def is_deny(self) -> bool:
        return self.ace_type in (ACCESS_DENIED_ACE_TYPE, ACCESS_DENIED_OBJECT_ACE_TYPE)

    @property
    def is_inherited(self) -> bool:
        return bool(self.ace_flags & INHERITED_ACE)

    @property
    def is_inherit_only(self) -> bool:
        return bool(self.ace_flags & INHERIT_ONLY_ACE)

    def has_right(self, right: int) -> bool:
        """Check that every bit of ``right`` is set in the access mask."""
        return (self.access_mask & right) == right


@dataclass
class SecurityDescriptor:
    """A decoded self-relative security descriptor."""
    revision: int
    control: int
    owner_sid: Optional[str] = None
    group_sid: Optional[str] = None
    aces: list = field(default_factory=list)  # List of AccessControlEntry


@dataclass
class DirectoryObject:
    """A directory entry classified by type, carrying its ACL edges.

    Attributes:
        object_id: SID of the object (DN for objects without one, e.g. OUs)
        domain: Domain the object was collected from
        object_type: Kind of object; drives the per-type ACE rules
        distinguished_name: Full LDAP DN
        attributes: The directory entry the object was built from
        aces: Deduplicated AccessEdge list, filled by the ACL stage
        properties: Additional facts added by worker stages (e.g. isdc)

    Design Decision:
        Using object_id as the primary key keeps objects consistent with
        the edge principals, which are also SIDs.
    """
    object_id: str
    domain: str
    object_type: ObjectType = ObjectType.UNKNOWN
    distinguished_name: Optional[str] = None
    attributes: Any = None
    aces: list = field(default_factory=list)  # List of AccessEdge
    properties: dict = field(default_factory=dict)

    def __hash__(self):
        return hash(self.object_id)

    def __eq__(self, other):
        if isinstance(other, DirectoryObject):
            return self.object_id == other.object_id
        return False


@dataclass(frozen=True)
class DomainControllerRecord:
    """Minimal identity of a domain controller account."""
    sid: str
    domain: str
    name: str = ""
    distinguished_name: str = ""
