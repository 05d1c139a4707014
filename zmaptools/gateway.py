"""Discover the default gateway, its hardware address and interface addresses."""

from __future__ import annotations

import dataclasses
import fcntl
import os
import socket
import struct
import sys
from dataclasses import dataclass
from ipaddress import IPv4Address
from typing import Iterator, Optional, Union

__all__ = [
    "GatewayError",
    "NetlinkMessage",
    "Route",
    "Neighbor",
    "build_netlink_request",
    "parse_netlink_messages",
    "parse_route_messages",
    "parse_neighbor_messages",
    "find_default_gateway",
    "find_hw_addr",
    "parse_routing_reply",
    "get_default_iface",
    "get_default_gw",
    "get_hw_addr",
    "get_iface_ip",
    "get_iface_hw_addr",
]

IS_LINUX = sys.platform.startswith("linux")

# Netlink (Linux) wire layout.
NLMSG_HDR = struct.Struct("=IHHII")  # len, type, flags, seq, pid
RTMSG = struct.Struct("=BBBBBBBBI")  # family, dst_len, src_len, tos, table, protocol, scope, type, flags
NDMSG = struct.Struct("=BBHiHBB")  # family, pad1, pad2, ifindex, state, flags, type
RTATTR = struct.Struct("=HH")  # len, type

NLMSG_ERROR = 2
NLMSG_DONE = 3
NLM_F_REQUEST = 0x1
NLM_F_MULTI = 0x2
NLM_F_DUMP = 0x300
RTM_GETROUTE = 26
RTM_GETNEIGH = 30
NL_RTA_OIF = 4
NL_RTA_GATEWAY = 5
NDA_DST = 1
NDA_LLADDR = 2
RT_TABLE_MAIN = 254
NUD_REACHABLE = 0x02
AF_INET = 2
IFHWADDRLEN = 6
GW_BUFFER_SIZE = 64000
ROUTE_BUFFER_SIZE = 8192

# Routing socket (BSD) wire layout; the leading fields are shared by the BSDs.
RT_MSGHDR = struct.Struct("=HBBHxxiiiii")  # msglen, version, type, index, flags, addrs, pid, seq, errno
RT_MSGHDR_SIZE = 92 if sys.platform == "darwin" else 152
RTM_VERSION = 5
RTM_GET = 0x4
RTF_GATEWAY = 0x2
RTF_LLINFO = 0x400
RTA_DST = 0x1
RTA_GATEWAY = 0x2
RTA_IFP = 0x10
RTAX_MAX = 8
AF_LINK = 18
ROUTE_REQUEST_SIZE = 4096
ROUTE_SEQ = 0x00FF

# Interface ioctls.
IFNAMSIZ = 16
IFF_UP = 0x1
IFF_LOOPBACK = 0x8
if IS_LINUX:
    SIOCGIFFLAGS = 0x8913
    SIOCGIFADDR = 0x8915
    SIOCGIFHWADDR = 0x8927
    IFREQ_SIZE = 40
else:
    SIOCGIFFLAGS = 0xC0206911
    SIOCGIFADDR = 0xC0206921
    SIOCGIFHWADDR = None
    IFREQ_SIZE = 32

_VPN_HINT = (
    " If you are using a VPN, supply the --iplayer flag"
    " (and provide an interface via -i)"
)


class GatewayError(Exception):
    """Raised when a route, address or interface lookup fails."""


@dataclass(frozen=True)
class NetlinkMessage:
    msg_type: int
    flags: int
    seq: int
    pid: int
    payload: bytes


@dataclass(frozen=True)
class Route:
    gateway: Optional[IPv4Address] = None
    oif: Optional[int] = None
    iface: Optional[str] = None
    lladdr: Optional[bytes] = None
    family: int = AF_INET
    table: int = RT_TABLE_MAIN


@dataclass(frozen=True)
class Neighbor:
    family: int
    ifindex: int
    state: int
    dst: Optional[IPv4Address] = None
    lladdr: Optional[bytes] = None


def _align(length: int) -> int:
    return (length + 3) & ~3


def _roundup(length: int) -> int:
    return 1 + ((length - 1) | 3) if length > 0 else 4


def build_netlink_request(msg_type: int, seq: int, payload: bytes, pid: int) -> bytes:
    """Build a dump request carrying ``payload`` as it goes on the wire."""
    length = NLMSG_HDR.size + len(payload)
    header = NLMSG_HDR.pack(length, msg_type, NLM_F_DUMP | NLM_F_REQUEST, seq, pid)
    return header + bytes(payload)


def parse_netlink_messages(data: bytes) -> list[NetlinkMessage]:
    """Split a buffer into netlink messages, stopping at the first malformed one."""
    messages = []
    offset = 0
    while len(data) - offset >= NLMSG_HDR.size:
        length, msg_type, flags, seq, pid = NLMSG_HDR.unpack_from(data, offset)
        if length < NLMSG_HDR.size or length > len(data) - offset:
            break
        payload = bytes(data[offset + NLMSG_HDR.size : offset + length])
        messages.append(NetlinkMessage(msg_type, flags, seq, pid, payload))
        offset += _align(length)
    return messages


def _attributes(buf: bytes) -> Iterator[tuple[int, bytes]]:
    offset = 0
    while len(buf) - offset >= RTATTR.size:
        length, kind = RTATTR.unpack_from(buf, offset)
        if length < RTATTR.size or length > len(buf) - offset:
            return
        yield kind, bytes(buf[offset + RTATTR.size : offset + length])
        offset += _align(length)


def parse_route_messages(data: bytes) -> list[Route]:
    """Decode the routes of an RTM_GETROUTE dump."""
    routes = []
    for message in parse_netlink_messages(data):
        if message.msg_type == NLMSG_DONE:
            continue
        if len(message.payload) < RTMSG.size:
            raise GatewayError("truncated route message")
        family, _, _, _, table, _, _, _, _ = RTMSG.unpack_from(message.payload)
        gateway = oif = None
        for kind, value in _attributes(message.payload[RTMSG.size :]):
            if kind == NL_RTA_OIF and len(value) >= 4:
                oif = struct.unpack_from("=i", value)[0]
            elif kind == NL_RTA_GATEWAY and len(value) >= 4:
                gateway = IPv4Address(value[:4])
        routes.append(Route(gateway=gateway, oif=oif, family=family, table=table))
    return routes


def parse_neighbor_messages(data: bytes) -> list[Neighbor]:
    """Decode the entries of an RTM_GETNEIGH dump."""
    neighbors = []
    for message in parse_netlink_messages(data):
        if message.msg_type == NLMSG_DONE:
            continue
        if len(message.payload) < NDMSG.size:
            raise GatewayError("truncated neighbor message")
        family, _, _, ifindex, state, _, _ = NDMSG.unpack_from(message.payload)
        dst = lladdr = None
        for kind, value in _attributes(message.payload[NDMSG.size :]):
            if kind == NDA_LLADDR:
                if len(value) != IFHWADDRLEN:
                    raise GatewayError(
                        f"Unexpected hardware address length ({len(value)})." + _VPN_HINT
                    )
                lladdr = value
            elif kind == NDA_DST:
                if len(value) != 4:
                    raise GatewayError(
                        f"Unexpected IP address length ({len(value)})." + _VPN_HINT
                    )
                dst = IPv4Address(value)
        neighbors.append(Neighbor(family, ifindex, state, dst, lladdr))
    return neighbors


def find_default_gateway(data: bytes) -> Route:
    """Return the first main-table IPv4 route that has a gateway."""
    oif = None
    for route in parse_route_messages(data):
        if route.family != AF_INET or route.table != RT_TABLE_MAIN:
            raise GatewayError("unexpected route outside the main IPv4 table")
        if route.oif is not None:
            oif = route.oif
        if route.gateway is not None:
            return dataclasses.replace(route, oif=oif)
    raise GatewayError("no default gateway found")


def find_hw_addr(data: bytes, gw_ip: Union[str, IPv4Address]) -> bytes:
    """Return the hardware address of ``gw_ip`` from a neighbor dump."""
    wanted = IPv4Address(gw_ip)
    for neighbor in parse_neighbor_messages(data):
        if neighbor.family != AF_INET:
            raise GatewayError("unexpected neighbor address family")
        if neighbor.dst == wanted and neighbor.lladdr is not None:
            return neighbor.lladdr
    raise GatewayError(f"no hardware address found for {wanted}")


def parse_routing_reply(data: bytes) -> Route:
    """Decode a routing-socket RTM_GET reply into gateway, interface and link address."""
    if len(data) < RT_MSGHDR_SIZE:
        raise GatewayError("short routing socket reply")
    _, _, _, _, _, addrs, _, _, err = RT_MSGHDR.unpack_from(data)
    if err:
        raise GatewayError(f"routing lookup failed: {os.strerror(err)}")
    gateway = iface = lladdr = None
    offset = RT_MSGHDR_SIZE
    for bit in range(RTAX_MAX):
        flag = 1 << bit
        if not addrs & flag:
            continue
        if offset + 2 > len(data):
            raise GatewayError("truncated routing socket reply")
        sa_len, family = data[offset], data[offset + 1]
        sa = bytes(data[offset : offset + max(sa_len, 2)])
        if flag == RTA_IFP:
            nlen = sa[5] if len(sa) > 5 else 0
            iface = sa[8 : 8 + nlen].decode(errors="replace")
        elif flag == RTA_GATEWAY:
            if family == AF_LINK and len(sa) > 6:
                nlen, alen = sa[5], sa[6]
                lladdr = sa[8 + nlen : 8 + nlen + alen] or None
            elif len(sa) >= 8:
                gateway = IPv4Address(sa[4:8])
        offset += _roundup(sa_len)
    return Route(gateway=gateway, iface=iface, lladdr=lladdr)


def _receive_netlink(sock: socket.socket, buffer_size: int) -> bytes:
    chunks = []
    received = 0
    while True:
        if received >= buffer_size:
            raise GatewayError("netlink reply does not fit the buffer")
        try:
            chunk = sock.recv(buffer_size - received)
        except OSError as exc:
            raise GatewayError(f"recv failed: {exc}") from exc
        if len(chunk) < NLMSG_HDR.size:
            raise GatewayError("recv failed: short netlink reply")
        length, msg_type, flags, _, _ = NLMSG_HDR.unpack_from(chunk)
        if length < NLMSG_HDR.size or length > len(chunk) or msg_type == NLMSG_ERROR:
            raise GatewayError("recv failed: netlink error reply")
        if msg_type == NLMSG_DONE:
            break
        chunks.append(chunk)
        received += len(chunk)
        if not flags & NLM_F_MULTI:
            break
    data = b"".join(chunks)
    if not data:
        raise GatewayError("empty netlink reply")
    return data


def _netlink_query(msg_type: int, seq: int, payload: bytes, buffer_size: int) -> bytes:
    try:
        sock = socket.socket(socket.AF_NETLINK, socket.SOCK_DGRAM, socket.NETLINK_ROUTE)
    except (OSError, AttributeError) as exc:
        raise GatewayError(f"unable to get socket: {exc}") from exc
    with sock:
        try:
            sock.send(build_netlink_request(msg_type, seq, payload, os.getpid()))
        except OSError as exc:
            raise GatewayError(f"failure sending: {exc}") from exc
        return _receive_netlink(sock, buffer_size)


def _route_query(flags: int, addrs: int, body: bytes = b"") -> Route:
    family = getattr(socket, "AF_ROUTE", None)
    if family is None:
        raise GatewayError("routing sockets are not available on this platform")
    pid = os.getpid()
    header = RT_MSGHDR.pack(
        ROUTE_REQUEST_SIZE, RTM_VERSION, RTM_GET, 0, flags, addrs, pid, ROUTE_SEQ, 0
    )
    request = (header.ljust(RT_MSGHDR_SIZE, b"\0") + body).ljust(ROUTE_REQUEST_SIZE, b"\0")
    try:
        with socket.socket(family, socket.SOCK_RAW, 0) as sock:
            sock.send(request)
            while True:
                reply = sock.recv(ROUTE_REQUEST_SIZE)
                if len(reply) < RT_MSGHDR_SIZE:
                    raise GatewayError("short routing socket reply")
                _, _, kind, _, _, _, rpid, rseq, _ = RT_MSGHDR.unpack_from(reply)
                if kind == RTM_GET and rpid == pid and rseq == ROUTE_SEQ:
                    return parse_routing_reply(reply)
    except OSError as exc:
        raise GatewayError(f"unable to query routing table: {exc}") from exc


def _ifreq(iface: str) -> bytearray:
    buf = bytearray(IFREQ_SIZE)
    name = iface.encode()[: IFNAMSIZ - 1]
    buf[: len(name)] = name
    return buf


def _ioctl(iface: str, request: int, buf: bytearray) -> bytes:
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        return fcntl.ioctl(sock.fileno(), request, bytes(buf))


def _iface_flags(iface: str) -> int:
    result = _ioctl(iface, SIOCGIFFLAGS, _ifreq(iface))
    return struct.unpack_from("=H", result, IFNAMSIZ)[0]


def get_default_iface() -> str:
    """Return the interface to scan from when none is given."""
    if not IS_LINUX:
        route = _route_query(RTF_GATEWAY, RTA_DST | RTA_IFP)
        if not route.iface:
            raise GatewayError("unable to retrieve gateway interface")
        return route.iface
    try:
        interfaces = sorted(socket.if_nameindex())
    except OSError as exc:
        raise GatewayError(f"unable to list interfaces: {exc}") from exc
    for _, name in interfaces:
        try:
            flags = _iface_flags(name)
        except OSError:
            continue
        if flags & IFF_UP and not flags & IFF_LOOPBACK:
            return name
    raise GatewayError(
        "could not detect default network interface (e.g. eth0). Try running as "
        "root or setting interface using -i flag."
    )


def get_default_gw(iface: str) -> IPv4Address:
    """Return the default gateway's address, checking it is reached through ``iface``."""
    if not IS_LINUX:
        route = _route_query(RTF_GATEWAY, RTA_DST | RTA_IFP)
        if route.gateway is None:
            raise GatewayError("unable to retrieve gateway")
        return route.gateway
    found = ""
    route = None
    try:
        route = find_default_gateway(
            _netlink_query(RTM_GETROUTE, 0, bytes(RTMSG.size), ROUTE_BUFFER_SIZE)
        )
        if route.oif is not None:
            found = socket.if_indextoname(route.oif)
    except (GatewayError, OSError):
        found = ""
    if route is None or found != iface:
        raise GatewayError(
            f"interface specified ({iface}) does not match the interface of the "
            f"default gateway ({found}). You will need to manually specify the MAC "
            "address of your gateway."
        )
    return route.gateway


def get_hw_addr(gw_ip: Union[str, IPv4Address], iface: str) -> bytes:
    """Return the hardware address of the gateway ``gw_ip`` seen on ``iface``."""
    gateway = IPv4Address(gw_ip)
    if not IS_LINUX:
        dst = struct.pack("=BBH", 16, AF_INET, 0) + gateway.packed + bytes(8)
        route = _route_query(RTF_LLINFO, RTA_DST, dst)
        if route.lladdr is None or len(route.lladdr) != IFHWADDRLEN:
            raise GatewayError("failed to fetch arp entry")
        return route.lladdr
    try:
        ifindex = socket.if_nametoindex(iface)
    except OSError:
        ifindex = 0
    request = NDMSG.pack(AF_INET, 0, 0, ifindex, NUD_REACHABLE, 0, NDA_LLADDR)
    return find_hw_addr(_netlink_query(RTM_GETNEIGH, 1, request, GW_BUFFER_SIZE), gateway)


def get_iface_ip(iface: str) -> IPv4Address:
    """Return the IPv4 address assigned to ``iface``."""
    buf = _ifreq(iface)
    if IS_LINUX:
        struct.pack_into("=H", buf, IFNAMSIZ, AF_INET)
    else:
        struct.pack_into("=BB", buf, IFNAMSIZ, 16, AF_INET)
    try:
        result = _ioctl(iface, SIOCGIFADDR, buf)
    except OSError as exc:
        raise GatewayError(f"ioctl failure: {exc.strerror}") from exc
    return IPv4Address(result[IFNAMSIZ + 4 : IFNAMSIZ + 8])


def get_iface_hw_addr(iface: str) -> bytes:
    """Return the hardware address of ``iface``."""
    if SIOCGIFHWADDR is None:
        raise GatewayError(f"unable to read the hardware address of {iface}")
    try:
        result = _ioctl(iface, SIOCGIFHWADDR, _ifreq(iface))
    except OSError as exc:
        raise GatewayError(f"unable to read the hardware address of {iface}: {exc}") from exc
    return bytes(result[IFNAMSIZ + 2 : IFNAMSIZ + 2 + IFHWADDRLEN])