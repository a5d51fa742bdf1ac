"""
Schema & Well-Known Tables
==========================

Static lookup data used by the ACL stage. Everything here is read-only
after import and shared by every worker without synchronization.
"""

from ..model.schemas import ObjectType


ALL_GUID = "00000000-0000-0000-0000-000000000000"

# Base schema GUID (schemaIDGUID of the object class) per object type.
# An inherited ACE applies to an object only when its inherited object
# type is ALL_GUID or the GUID of the object's class.
SCHEMA_GUIDS = {
    ObjectType.USER: "bf967aba-0de6-11d0-a285-00aa003049e2",
    ObjectType.COMPUTER: "bf967a86-0de6-11d0-a285-00aa003049e2",
    ObjectType.GROUP: "bf967a9c-0de6-11d0-a285-00aa003049e2",
    ObjectType.DOMAIN: "19195a5a-6da0-11d0-afd3-00c04fd930c9",
    ObjectType.GPO: "f30e3bc2-9ff0-11d1-b603-0000f80367c1",
    ObjectType.OU: "bf967aa5-0de6-11d0-a285-00aa003049e2",
}

# Well-known SIDs -> (principal type, display name). These are the same in
# every domain and never need a directory round trip.
WELL_KNOWN_PRINCIPALS = {
    'S-1-0': (ObjectType.USER, 'Null Authority'),
    'S-1-0-0': (ObjectType.USER, 'Nobody'),
    'S-1-1': (ObjectType.USER, 'World Authority'),
    'S-1-1-0': (ObjectType.GROUP, 'Everyone'),
    'S-1-2': (ObjectType.USER, 'Local Authority'),
    'S-1-2-0': (ObjectType.GROUP, 'Local'),
    'S-1-2-1': (ObjectType.GROUP, 'Console Logon'),
    'S-1-3': (ObjectType.USER, 'Creator Authority'),
    'S-1-3-0': (ObjectType.USER, 'Creator Owner'),
    'S-1-3-1': (ObjectType.GROUP, 'Creator Group'),
    'S-1-3-2': (ObjectType.COMPUTER, 'Creator Owner Server'),
    'S-1-3-3': (ObjectType.COMPUTER, 'Creator Group Server'),
    'S-1-3-4': (ObjectType.GROUP, 'Owner Rights'),
    'S-1-4': (ObjectType.USER, 'Non-unique Authority'),
    'S-1-5': (ObjectType.USER, 'NT Authority'),
    'S-1-5-1': (ObjectType.GROUP, 'Dialup'),
    'S-1-5-2': (ObjectType.GROUP, 'Network'),
    'S-1-5-3': (ObjectType.GROUP, 'Batch'),
    'S-1-5-4': (ObjectType.GROUP, 'Interactive'),
    'S-1-5-6': (ObjectType.GROUP, 'Service'),
    'S-1-5-7': (ObjectType.GROUP, 'Anonymous'),
    'S-1-5-8': (ObjectType.GROUP, 'Proxy'),
    'S-1-5-9': (ObjectType.GROUP, 'Enterprise Domain Controllers'),
    'S-1-5-10': (ObjectType.USER, 'Principal Self'),
    'S-1-5-11': (ObjectType.GROUP, 'Authenticated Users'),
    'S-1-5-12': (ObjectType.GROUP, 'Restricted Code'),
    'S-1-5-13': (ObjectType.GROUP, 'Terminal Server Users'),
    'S-1-5-14': (ObjectType.GROUP, 'Remote Interactive Logon'),
    'S-1-5-15': (ObjectType.GROUP, 'This Organization'),
    'S-1-5-17': (ObjectType.GROUP, 'IUSR'),
    'S-1-5-18': (ObjectType.USER, 'Local System'),
    'S-1-5-19': (ObjectType.USER, 'NT Authority Local Service'),
    'S-1-5-20': (ObjectType.USER, 'NT Authority Network Service'),
    'S-1-5-80-0': (ObjectType.GROUP, 'All Services'),
    'S-1-5-32-544': (ObjectType.GROUP, 'Administrators'),
    'S-1-5-32-545': (ObjectType.GROUP, 'Users'),
    'S-1-5-32-546': (ObjectType.GROUP, 'Guests'),
    'S-1-5-32-547': (ObjectType.GROUP, 'Power Users'),
    'S-1-5-32-548': (ObjectType.GROUP, 'Account Operators'),
    'S-1-5-32-549': (ObjectType.GROUP, 'Server Operators'),
    'S-1-5-32-550': (ObjectType.GROUP, 'Print Operators'),
    'S-1-5-32-551': (ObjectType.GROUP, 'Backup Operators'),
    'S-1-5-32-552': (ObjectType.GROUP, 'Replicators'),
    'S-1-5-32-554': (ObjectType.GROUP, 'Pre-Windows 2000 Compatible Access'),
    'S-1-5-32-555': (ObjectType.GROUP, 'Remote Desktop Users'),
    'S-1-5-32-556': (ObjectType.GROUP, 'Network Configuration Operators'),
    'S-1-5-32-557': (ObjectType.GROUP, 'Incoming Forest Trust Builders'),
    'S-1-5-32-558': (ObjectType.GROUP, 'Performance Monitor Users'),
    'S-1-5-32-559': (ObjectType.GROUP, 'Performance Log Users'),
    'S-1-5-32-560': (ObjectType.GROUP, 'Windows Authorization Access Group'),
    'S-1-5-32-561': (ObjectType.GROUP, 'Terminal Server License Servers'),
    'S-1-5-32-562': (ObjectType.GROUP, 'Distributed COM Users'),
    'S-1-5-32-568': (ObjectType.GROUP, 'IIS_IUSRS'),
    'S-1-5-32-569': (ObjectType.GROUP, 'Cryptographic Operators'),
    'S-1-5-32-573': (ObjectType.GROUP, 'Event Log Readers'),
    'S-1-5-32-574': (ObjectType.GROUP, 'Certificate Service DCOM Access'),
    'S-1-5-32-575': (ObjectType.GROUP, 'RDS Remote Access Servers'),
    'S-1-5-32-576': (ObjectType.GROUP, 'RDS Endpoint Servers'),
    'S-1-5-32-577': (ObjectType.GROUP, 'RDS Management Servers'),
    'S-1-5-32-578': (ObjectType.GROUP, 'Hyper-V Administrators'),
    'S-1-5-32-579': (ObjectType.GROUP, 'Access Control Assistance Operators'),
    'S-1-5-32-580': (ObjectType.GROUP, 'Remote Management Users'),
}

# Local System, Creator Owner, Principal Self. Never emitted as principals.
STRUCTURAL_SIDS = frozenset({'S-1-5-18', 'S-1-3-0', 'S-1-5-10'})

# Access mask bits (ActiveDirectoryRights). Composite rights are matched
# on all of their bits.
ADS_RIGHT_DS_CREATE_CHILD = 0x00000001
ADS_RIGHT_DS_DELETE_CHILD = 0x00000002
ADS_RIGHT_ACTRL_DS_LIST = 0x00000004
ADS_RIGHT_DS_SELF = 0x00000008
ADS_RIGHT_DS_READ_PROP = 0x00000010
ADS_RIGHT_DS_WRITE_PROP = 0x00000020
ADS_RIGHT_DS_DELETE_TREE = 0x00000040
ADS_RIGHT_DS_LIST_OBJECT = 0x00000080
ADS_RIGHT_DS_CONTROL_ACCESS = 0x00000100
READ_CONTROL = 0x00020000
WRITE_DAC = 0x00040000
WRITE_OWNER = 0x00080000

GENERIC_ALL_BIT = 0x10000000
GENERIC_WRITE_BIT = 0x40000000

# Full control as stored in the directory (generic bits already mapped)
ADS_GENERIC_ALL = 0x000F01FF
ADS_GENERIC_WRITE = READ_CONTROL | ADS_RIGHT_DS_WRITE_PROP | ADS_RIGHT_DS_SELF

# Extended rights
DS_REPLICATION_GET_CHANGES = "1131f6aa-9c07-11d1-f79f-00c04fc2dcd2"
DS_REPLICATION_GET_CHANGES_ALL = "1131f6ad-9c07-11d1-f79f-00c04fc2dcd2"
USER_FORCE_CHANGE_PASSWORD = "00299570-246d-11d0-a768-00aa006e0529"

# Attributes
SERVICE_PRINCIPAL_NAME = "f3a64788-5306-11d1-a9c5-0000f80367c1"
MEMBER_ATTRIBUTE = "bf9679c0-0de6-11d0-a285-00aa003049e2"
ALLOWED_TO_ACT = "3f78c3e5-f79a-46bd-a0b8-9d18116ddc79"

# LAPS
LAPS_PASSWORD_ATTRIBUTE = "ms-Mcs-AdmPwd"
LAPS_EXPIRATION_ATTRIBUTE = "ms-mcs-admpwdexpirationtime"

# Domain controller account control bit (SERVER_TRUST_ACCOUNT)
DC_LDAP_FILTER = "(userAccountControl:1.2.840.113556.1.4.803:=8192)"


def is_all_guid(guid) -> bool:
    """True for the all-zero GUID or an absent object type."""
    return not guid or guid == ALL_GUID
