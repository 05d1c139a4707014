import struct
from ipaddress import IPv4Address

import pytest

from zmaptools.gateway import (
    AF_LINK,
    RT_MSGHDR_SIZE,
    RTA_DST,
    RTA_GATEWAY,
    RTA_IFP,
    GatewayError,
    NetlinkMessage,
    find_default_gateway,
    find_hw_addr,
    get_iface_ip,
    build_netlink_request,
    parse_neighbor_messages,
    parse_netlink_messages,
    parse_route_messages,
    parse_routing_reply,
)

RTM_NEWROUTE = 24
RTM_NEWNEIGH = 28
MAC = bytes([0x02, 0, 0, 0, 0, 0x01])


def nl_message(msg_type, payload, flags=0):
    length = 16 + len(payload)
    msg = struct.pack("=IHHII", length, msg_type, flags, 1, 0) + payload
    return msg + b"\0" * (-len(msg) % 4)


def rtattr(kind, value):
    length = 4 + len(value)
    body = struct.pack("=HH", length, kind) + value
    return body + b"\0" * (-len(body) % 4)


def route_msg(attrs=b"", table=254, family=2):
    header = struct.pack("=BBBBBBBBI", family, 0, 0, 0, table, 0, 0, 0, 0)
    return nl_message(RTM_NEWROUTE, header + attrs)


def neigh_msg(attrs=b"", family=2):
    header = struct.pack("=BBHiHBB", family, 0, 0, 2, 2, 0, 0)
    return nl_message(RTM_NEWNEIGH, header + attrs)


def sockaddr_in(ip):
    return struct.pack("=BBH", 16, 2, 0) + IPv4Address(ip).packed + bytes(8)


def sockaddr_dl(name, lladdr=b""):
    body = struct.pack(
        "=BBHBBBB", 8 + len(name) + len(lladdr), AF_LINK, 1, 6, len(name), len(lladdr), 0
    ) + name + lladdr
    return body + b"\0" * (-len(body) % 4)


def rt_reply(addrs, sockaddrs, err=0):
    header = struct.pack("=HBBHxxiiiii", 0, 5, 4, 0, 0, addrs, 0, 0, err)
    return header.ljust(RT_MSGHDR_SIZE, b"\0") + sockaddrs


def test_build_request_round_trip():
    payload = bytes(12)
    request = build_netlink_request(26, 7, payload, 1234)
    assert len(request) == 16 + len(payload)
    assert parse_netlink_messages(request) == [
        NetlinkMessage(msg_type=26, flags=0x301, seq=7, pid=1234, payload=payload)
    ]


def test_parse_messages_stops_at_truncated():
    data = route_msg() + route_msg()
    assert len(parse_netlink_messages(data)) == 2
    assert len(parse_netlink_messages(data[:-4])) == 1


def test_parse_routes_reads_attributes():
    gw = IPv4Address("192.0.2.1")
    data = route_msg(rtattr(4, struct.pack("=i", 2)) + rtattr(5, gw.packed))
    (route,) = parse_route_messages(data)
    assert route.gateway == gw
    assert route.oif == 2
    assert route.table == 254


def test_default_gateway_keeps_earlier_oif():
    gw = IPv4Address("192.0.2.1")
    data = route_msg(rtattr(4, struct.pack("=i", 3))) + route_msg(rtattr(5, gw.packed))
    route = find_default_gateway(data)
    assert route.gateway == gw
    assert route.oif == 3


def test_default_gateway_rejects_other_table():
    with pytest.raises(GatewayError):
        find_default_gateway(route_msg(table=255))


def test_default_gateway_missing():
    with pytest.raises(GatewayError):
        find_default_gateway(route_msg(rtattr(4, struct.pack("=i", 2))))


def test_find_hw_addr_matches_gateway():
    data = neigh_msg(rtattr(1, IPv4Address("192.0.2.9").packed) + rtattr(2, bytes(6))) + neigh_msg(
        rtattr(1, IPv4Address("192.0.2.1").packed) + rtattr(2, MAC)
    )
    assert find_hw_addr(data, "192.0.2.1") == MAC
    assert find_hw_addr(data, IPv4Address("192.0.2.9")) == bytes(6)


def test_find_hw_addr_not_found():
    data = neigh_msg(rtattr(1, IPv4Address("192.0.2.9").packed) + rtattr(2, MAC))
    with pytest.raises(GatewayError):
        find_hw_addr(data, "192.0.2.1")


def test_neighbor_wrong_family():
    with pytest.raises(GatewayError):
        find_hw_addr(neigh_msg(family=10), "192.0.2.1")


def test_neighbor_bad_lladdr_length():
    with pytest.raises(GatewayError, match="VPN"):
        parse_neighbor_messages(neigh_msg(rtattr(2, bytes(4))))


def test_neighbor_bad_dst_length():
    with pytest.raises(GatewayError, match="IP address length"):
        parse_neighbor_messages(neigh_msg(rtattr(1, bytes(16))))


def test_routing_reply_gateway_and_iface():
    data = rt_reply(
        RTA_DST | RTA_GATEWAY | RTA_IFP,
        sockaddr_in("0.0.0.0") + sockaddr_in("192.0.2.1") + sockaddr_dl(b"em0"),
    )
    route = parse_routing_reply(data)
    assert route.gateway == IPv4Address("192.0.2.1")
    assert route.iface == "em0"


def test_routing_reply_link_gateway():
    data = rt_reply(RTA_DST | RTA_GATEWAY, sockaddr_in("192.0.2.1") + sockaddr_dl(b"em0", MAC))
    route = parse_routing_reply(data)
    assert route.lladdr == MAC
    assert route.gateway is None


def test_routing_reply_errno():
    with pytest.raises(GatewayError):
        parse_routing_reply(rt_reply(RTA_DST, sockaddr_in("0.0.0.0"), err=3))


def test_routing_reply_short():
    with pytest.raises(GatewayError):
        parse_routing_reply(bytes(10))


def test_iface_ip_unknown_interface():
    with pytest.raises(GatewayError):
        get_iface_ip("zzmissing0")