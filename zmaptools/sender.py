"""Send probe frames on a link-layer socket or an opened packet device."""

from __future__ import annotations

import os
import socket
from typing import Optional, Union

__all__ = ["SendError", "PacketSender", "link_address"]

IFNAMSIZ = 16
ETH_ALEN = 6
ETHERTYPE_IP = 0x0800


class SendError(Exception):
    """Raised when a sender cannot be set up or a packet cannot be sent."""


def link_address(iface: str, gw_mac: bytes, send_ip_pkts: bool = False) -> tuple:
    """Return the packet-socket destination address for frames to the gateway."""
    if len(iface.encode()) >= IFNAMSIZ:
        raise SendError(f"device interface name ({iface}) too long")
    try:
        socket.if_nametoindex(iface)
    except OSError as exc:
        raise SendError(f"SIOCGIFINDEX: {exc}") from exc
    mac = bytes(gw_mac)
    if len(mac) != ETH_ALEN:
        raise SendError(f"gateway MAC address must be {ETH_ALEN} bytes")
    protocol = ETHERTYPE_IP if send_ip_pkts else 0
    return (iface, protocol, 0, 0, mac)


class PacketSender:
    """Writes packets to a socket, to ``address`` when given, or to a raw descriptor."""

    def __init__(
        self, sock: Union[socket.socket, int], address: Optional[tuple] = None
    ) -> None:
        self.sock = sock
        self.address = address

    def send(self, packet: bytes) -> int:
        """Send one packet and return the number of bytes written."""
        try:
            if isinstance(self.sock, socket.socket):
                if self.address is not None:
                    return self.sock.sendto(packet, self.address)
                return self.sock.send(packet)
            fd = self.sock if isinstance(self.sock, int) else self.sock.fileno()
            return os.write(fd, packet)
        except OSError as exc:
            raise SendError(f"send failed: {exc}") from exc