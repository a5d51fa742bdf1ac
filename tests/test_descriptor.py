import struct

import pytest

from daclhound.acl.descriptor import SecurityDescriptorParser, ParseError, convert_sid, format_guid
from conftest import DOMAIN_SID, ace, guid_bytes, security_descriptor, sid_bytes


USER_SID = f"{DOMAIN_SID}-1104"
GET_CHANGES = "1131f6aa-9c07-11d1-f79f-00c04fc2dcd2"
USER_CLASS = "bf967aba-0de6-11d0-a285-00aa003049e2"


@pytest.fixture
def parser():
    return SecurityDescriptorParser()


def test_convert_sid_round_trips_domain_sid():
    assert convert_sid(sid_bytes(USER_SID)) == USER_SID
    assert convert_sid(sid_bytes("S-1-5-32-544") + b"\xff\xff") == "S-1-5-32-544"


def test_convert_sid_rejects_truncated_sub_authorities():
    with pytest.raises(ParseError):
        convert_sid(sid_bytes(USER_SID)[:-2])


def test_format_guid_uses_mixed_endianness():
    assert format_guid(guid_bytes(GET_CHANGES)) == GET_CHANGES


def test_absent_descriptor_returns_none(parser):
    assert parser.parse(None) is None
    assert parser.parse(b"") is None


def test_owner_and_aces_are_decoded_in_order(parser):
    sd = security_descriptor(
        owner=USER_SID,
        group="S-1-5-32-544",
        aces=[
            ace("S-1-1-0", 0x20, flags=0x10),
            ace(USER_SID, 0x100, ace_type=5, object_type=GET_CHANGES, inherited_object_type=USER_CLASS),
            ace("S-1-5-11", 0xF01FF, ace_type=1),
        ],
    )

    descriptor = parser.parse(sd)

    assert descriptor.owner_sid == USER_SID
    assert descriptor.group_sid == "S-1-5-32-544"
    assert [a.sid for a in descriptor.aces] == ["S-1-1-0", USER_SID, "S-1-5-11"]

    first, second, third = descriptor.aces
    assert first.is_allow and first.is_inherited and first.object_type is None
    assert second.object_type == GET_CHANGES
    assert second.inherited_object_type == USER_CLASS
    assert second.access_mask == 0x100
    assert third.is_deny and not third.is_allow


def test_dacl_not_present_yields_no_aces(parser):
    descriptor = parser.parse(security_descriptor(owner=USER_SID, dacl_present=False))

    assert descriptor.owner_sid == USER_SID
    assert descriptor.aces == []


def test_unknown_ace_types_are_skipped(parser):
    audit_ace = struct.pack("<BBHI", 2, 0, 8 + len(sid_bytes(USER_SID)), 0x10) + sid_bytes(USER_SID)
    sd = security_descriptor(aces=[audit_ace, ace(USER_SID, 0x40000)])

    descriptor = parser.parse(sd)

    assert len(descriptor.aces) == 1
    assert descriptor.aces[0].access_mask == 0x40000


@pytest.mark.parametrize("mangle", [
    lambda sd: sd[:12],                                   # header truncated
    lambda sd: b"\x02" + sd[1:],                          # bad revision
    lambda sd: sd[:4] + struct.pack("<I", 4096) + sd[8:],  # owner offset past end
    lambda sd: sd[:-6],                                    # last ACE truncated
])
def test_malformed_descriptor_raises_parse_error(parser, mangle):
    sd = security_descriptor(owner=USER_SID, aces=[ace(USER_SID, 0x40000)])

    with pytest.raises(ParseError):
        parser.parse(mangle(sd))


def test_ace_count_larger_than_acl_raises(parser):
    sd = bytearray(security_descriptor(aces=[ace(USER_SID, 0x40000)]))
    dacl_offset = struct.unpack_from("<I", sd, 16)[0]
    struct.pack_into("<H", sd, dacl_offset + 4, 5)

    with pytest.raises(ParseError):
        parser.parse(bytes(sd))
