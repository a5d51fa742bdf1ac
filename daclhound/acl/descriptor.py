"""
Security Descriptor Interpreter
===============================

Decodes the binary self-relative security descriptor stored in
nTSecurityDescriptor into an owner SID and the ordered DACL.

Layout reference: MS-DTYP 2.4.6 (SECURITY_DESCRIPTOR), 2.4.5 (ACL),
2.4.4 (ACEs), 2.4.2.2 (SID).
"""

import struct
from typing import Optional

from ..model.schemas import (
    AccessControlEntry, SecurityDescriptor,
    ACCESS_ALLOWED_ACE_TYPE, ACCESS_DENIED_ACE_TYPE,
    ACCESS_ALLOWED_OBJECT_ACE_TYPE, ACCESS_DENIED_OBJECT_ACE_TYPE
)


SE_DACL_PRESENT = 0x0004

ACE_OBJECT_TYPE_PRESENT = 0x01
ACE_INHERITED_OBJECT_TYPE_PRESENT = 0x02

SD_HEADER_SIZE = 20
ACL_HEADER_SIZE = 8
ACE_HEADER_SIZE = 4


class ParseError(ValueError):
    """Raised when security descriptor bytes are malformed."""


def convert_sid(sid_bytes: bytes) -> str:
    """Convert binary SID to string format.

    Args:
        sid_bytes: Binary SID data (may be followed by unrelated bytes)

    Returns:
        String SID (e.g., "S-1-5-21-...")

    Raises:
        ParseError: If the buffer is shorter than the SID it describes
    """
    # SID structure:
    # Byte 0: Revision
    # Byte 1: Number of sub-authorities
    # Bytes 2-7: Identifier authority (big-endian)
    # Remaining: Sub-authorities (little-endian 32-bit)
    if len(sid_bytes) < 8:
        raise ParseError(f"SID truncated: {len(sid_bytes)} bytes")

    revision = sid_bytes[0]
    sub_auth_count = sid_bytes[1]
    if revision != 1:
        raise ParseError(f"Unsupported SID revision {revision}")
    if len(sid_bytes) < 8 + sub_auth_count * 4:
        raise ParseError(f"SID declares {sub_auth_count} sub-authorities but is truncated")

    id_auth = int.from_bytes(sid_bytes[2:8], 'big')
    sub_auths = struct.unpack_from(f'<{sub_auth_count}I', sid_bytes, 8)

    sid = f"S-{revision}-{id_auth}"
    for sub_auth in sub_auths:
        sid += f"-{sub_auth}"
    return sid


def format_guid(guid_bytes: bytes) -> str:
    """Format GUID bytes as string.

    Args:
        guid_bytes: 16 bytes of GUID data

    Returns:
        GUID string (e.g., "00299570-246d-11d0-a768-00aa006e0529")
    """
    if len(guid_bytes) != 16:
        raise ParseError(f"GUID must be 16 bytes, got {len(guid_bytes)}")

    # GUID is stored with mixed endianness:
    # First 3 components are little-endian, last 2 are big-endian
    data1, data2, data3 = struct.unpack('<IHH', guid_bytes[0:8])
    data4 = guid_bytes[8:10].hex()
    data5 = guid_bytes[10:16].hex()

    return f"{data1:08x}-{data2:04x}-{data3:04x}-{data4}-{data5}"


class SecurityDescriptorParser:
    """Parser for self-relative security descriptors.

    Usage:
        descriptor = SecurityDescriptorParser().parse(entry.get_bytes('ntsecuritydescriptor'))
        if descriptor:
            for ace in descriptor.aces:
                ...

    The parser is stateless and safe to share between threads.
    """

    def parse(self, sd_bytes: Optional[bytes]) -> Optional[SecurityDescriptor]:
        """Decode a security descriptor.

        Args:
            sd_bytes: Raw descriptor bytes, or None when the attribute was absent

        Returns:
            SecurityDescriptor, or None for absent input

        Raises:
            ParseError: If the bytes are not a well-formed descriptor
        """
        if not sd_bytes:
            return None

        if len(sd_bytes) < SD_HEADER_SIZE:
            raise ParseError(f"Security descriptor truncated: {len(sd_bytes)} bytes")

        # Security Descriptor structure:
        # Byte 0: Revision
        # Byte 1: Sbz1
        # Bytes 2-3: Control (little-endian)
        # Bytes 4-7: Owner offset
        # Bytes 8-11: Group offset
        # Bytes 12-15: SACL offset
        # Bytes 16-19: DACL offset
        revision = sd_bytes[0]
        if revision != 1:
            raise ParseError(f"Unsupported security descriptor revision {revision}")

        control, owner_offset, group_offset, _sacl_offset, dacl_offset = struct.unpack_from(
            '<HIIII', sd_bytes, 2
        )

        descriptor = SecurityDescriptor(
            revision=revision,
            control=control,
            owner_sid=self._read_sid(sd_bytes, owner_offset),
            group_sid=self._read_sid(sd_bytes, group_offset),
        )

        if control & SE_DACL_PRESENT and dacl_offset:
            descriptor.aces = self._parse_acl(sd_bytes, dacl_offset)

        return descriptor

    def _read_sid(self, sd_bytes: bytes, offset: int) -> Optional[str]:
        if offset == 0:
            return None
        if offset < SD_HEADER_SIZE or offset >= len(sd_bytes):
            raise ParseError(f"SID offset {offset} outside descriptor")
        return convert_sid(sd_bytes[offset:])

    def _parse_acl(self, sd_bytes: bytes, offset: int) -> list:
        """Decode the ACL at ``offset``, keeping ACE order."""
        if offset < SD_HEADER_SIZE or offset + ACL_HEADER_SIZE > len(sd_bytes):
            raise ParseError(f"ACL offset {offset} outside descriptor")

        # ACL structure:
        # Byte 0: AclRevision
        # Byte 1: Sbz1
        # Bytes 2-3: AclSize
        # Bytes 4-5: AceCount
        # Bytes 6-7: Sbz2
        acl_size, ace_count = struct.unpack_from('<HH', sd_bytes, offset + 2)
        if acl_size < ACL_HEADER_SIZE or offset + acl_size > len(sd_bytes):
            raise ParseError(f"ACL size {acl_size} exceeds descriptor")

        acl = sd_bytes[offset:offset + acl_size]
        aces = []
        ace_offset = ACL_HEADER_SIZE

        for index in range(ace_count):
            if ace_offset + ACE_HEADER_SIZE > len(acl):
                raise ParseError(f"ACE {index} header overruns ACL")

            # ACE Header:
            # Byte 0: AceType
            # Byte 1: AceFlags
            # Bytes 2-3: AceSize
            ace_type = acl[ace_offset]
            ace_flags = acl[ace_offset + 1]
            ace_size = struct.unpack_from('<H', acl, ace_offset + 2)[0]

            if ace_size < ACE_HEADER_SIZE or ace_offset + ace_size > len(acl):
                raise ParseError(f"ACE {index} size {ace_size} overruns ACL")

            ace = self._parse_ace(acl[ace_offset:ace_offset + ace_size], ace_type, ace_flags)
            if ace is not None:
                aces.append(ace)

            ace_offset += ace_size

        return aces

    def _parse_ace(self, ace_data: bytes, ace_type: int, ace_flags: int) -> Optional[AccessControlEntry]:
        """Decode one ACE body. Types other than allow/deny are skipped."""
        if ace_type in (ACCESS_ALLOWED_ACE_TYPE, ACCESS_DENIED_ACE_TYPE):
            # Bytes 4-7: Access mask
            # Remaining: SID
            if len(ace_data) < 8:
                raise ParseError("ACE too short for access mask")
            access_mask = struct.unpack_from('<I', ace_data, 4)[0]
            return AccessControlEntry(
                sid=convert_sid(ace_data[8:]),
                access_mask=access_mask,
                ace_type=ace_type,
                ace_flags=ace_flags,
            )

        if ace_type in (ACCESS_ALLOWED_OBJECT_ACE_TYPE, ACCESS_DENIED_OBJECT_ACE_TYPE):
            # Bytes 4-7: Access mask
            # Bytes 8-11: Flags
            # Optional: Object type GUID (16 bytes)
            # Optional: Inherited object type GUID (16 bytes)
            # Remaining: SID
            if len(ace_data) < 12:
                raise ParseError("Object ACE too short for flags")
            access_mask, flags = struct.unpack_from('<II', ace_data, 4)

            sid_offset = 12
            object_type = None
            inherited_object_type = None

            if flags & ACE_OBJECT_TYPE_PRESENT:
                object_type = format_guid(ace_data[sid_offset:sid_offset + 16])
                sid_offset += 16

            if flags & ACE_INHERITED_OBJECT_TYPE_PRESENT:
                inherited_object_type = format_guid(ace_data[sid_offset:sid_offset + 16])
                sid_offset += 16

            return AccessControlEntry(
                sid=convert_sid(ace_data[sid_offset:]),
                access_mask=access_mask,
                ace_type=ace_type,
                ace_flags=ace_flags,
                object_type=object_type,
                inherited_object_type=inherited_object_type,
            )

        return None
