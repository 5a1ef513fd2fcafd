# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import pytest

from screenshare.discovery.protocol import (
    NTS_BYEBYE,
    DiscoveredEndpoint,
    MessageKind,
    build_notify,
    build_response,
    build_search,
    endpoint_from_message,
    format_endpoint_list,
    format_location,
    make_usn,
    parse_location,
    parse_message,
)
from screenshare.exceptions import MalformedMessage, ProtocolViolation


ST = "urn:screen-share:receiver"
USN = make_usn("1234", ST)


def test_search_message_parses():
    msg = parse_message(build_search(ST, "239.255.255.250", 1900, mx=3))
    assert msg.kind is MessageKind.SEARCH
    assert msg.service_type == ST
    assert msg.mx == 3
    assert msg.header("host") == "239.255.255.250:1900"
    assert msg.header("MAN") == '"ssdp:discover"'


def test_response_message_parses():
    location = format_location("192.168.1.100", 8081)
    msg = parse_message(build_response(location, ST, USN, max_age=900))
    assert msg.kind is MessageKind.RESPONSE
    assert msg.location == "http://192.168.1.100:8081/"
    assert msg.usn == "uuid:1234::urn:screen-share:receiver"
    assert msg.max_age == 900


def test_announce_with_port_round_trips():
    raw = build_notify(format_location("10.1.2.3", 9100), ST, USN, "239.255.255.250", 1900)
    msg = parse_message(raw)
    assert msg.kind is MessageKind.NOTIFY
    assert msg.service_type == ST
    assert msg.nts == "ssdp:alive"
    ep = endpoint_from_message(msg, default_port=8081)
    assert ep == DiscoveredEndpoint("10.1.2.3", 9100, USN)


def test_byebye_announce():
    raw = build_notify(format_location("10.1.2.3", 9100), ST, USN, "239.255.255.250", 1900, nts=NTS_BYEBYE)
    assert parse_message(raw).nts == NTS_BYEBYE


def test_location_without_port_uses_default():
    raw = b"HTTP/1.1 200 OK\r\nLOCATION: http://192.168.1.100/\r\nST: " + ST.encode() + b"\r\n\r\n"
    ep = endpoint_from_message(parse_message(raw), default_port=8081)
    assert ep is not None
    assert (ep.address, ep.port) == ("192.168.1.100", 8081)


@pytest.mark.parametrize(
    "value, expected",
    [
        ("http://10.0.0.5:9100/", ("10.0.0.5", 9100)),
        ("http://10.0.0.5:9100", ("10.0.0.5", 9100)),
        ("http://10.0.0.5/", ("10.0.0.5", 8081)),
        ("http://10.0.0.5", ("10.0.0.5", 8081)),
        ("proto://10.0.0.5:7000/desc.xml", ("10.0.0.5", 7000)),
        ("  http://10.0.0.5:9100/  ", ("10.0.0.5", 9100)),
    ],
)
def test_parse_location_accepts(value, expected):
    assert parse_location(value, 8081) == expected


@pytest.mark.parametrize(
    "value",
    [None, "", "10.0.0.5:9100", "http://:9100/", "http://10.0.0.5:abc/", "http://10.0.0.5:70000/"],
)
def test_parse_location_rejects(value):
    assert parse_location(value, 8081) is None


def test_headers_are_case_insensitive_and_lf_tolerant():
    raw = (
        b"HTTP/1.1 200 OK\n"
        b"location: http://10.0.0.7:8082/\n"
        b"st: urn:screen-share:receiver\n"
        b"X-Vendor-Thing: whatever\n"
        b"this line has no colon\n"
        b"Location: http://10.9.9.9:1/\n"
        b"\n"
    )
    msg = parse_message(raw)
    assert msg.kind is MessageKind.RESPONSE
    # First occurrence wins
    assert msg.location == "http://10.0.0.7:8082/"
    assert msg.service_type == ST
    assert msg.header("x-vendor-thing") == "whatever"


def test_headers_after_blank_line_are_ignored():
    raw = b"HTTP/1.1 200 OK\r\n\r\nLOCATION: http://10.0.0.7:8082/\r\n"
    assert parse_message(raw).location is None


def test_missing_location_yields_no_endpoint():
    msg = parse_message(b"HTTP/1.1 200 OK\r\nST: " + ST.encode() + b"\r\n\r\n")
    assert endpoint_from_message(msg, 8081) is None


@pytest.mark.parametrize(
    "raw",
    [
        b"",
        b"\r\n\r\n",
        b"\xff\xfe garbage",
        "NOTIFY * HTTP/1.1\r\nLOCATION: http://hé/\r\n\r\n".encode("utf-8"),
        b"HTTP/1.1 404 Not Found\r\n\r\n",
        b"GET / HTTP/1.1\r\n\r\n",
        b"hello world",
    ],
)
def test_malformed_datagrams_raise(raw):
    with pytest.raises(MalformedMessage):
        parse_message(raw)


def test_malformed_is_a_protocol_violation():
    assert issubclass(MalformedMessage, ProtocolViolation)


def test_bad_max_age_and_mx_are_none():
    raw = b"M-SEARCH * HTTP/1.1\r\nMX: soon\r\nCACHE-CONTROL: max-age=forever\r\n\r\n"
    msg = parse_message(raw)
    assert msg.mx is None
    assert msg.max_age is None


def test_format_endpoint_list():
    endpoints = [DiscoveredEndpoint("192.168.1.100", 8081), DiscoveredEndpoint("192.168.1.101", 9100)]
    assert format_endpoint_list(endpoints) == "[0] 192.168.1.100:8081\n[1] 192.168.1.101:9100"
    assert format_endpoint_list([]) == ""
