import os
import socket

import pytest

from zmaptools.sender import ETHERTYPE_IP, PacketSender, SendError, link_address

MAC = bytes([0x02, 0, 0, 0, 0, 0x01])


def any_iface():
    return socket.if_nameindex()[0][1]


def test_link_address_ip_packets():
    name = any_iface()
    assert link_address(name, MAC, True) == (name, ETHERTYPE_IP, 0, 0, MAC)


def test_link_address_ethernet_frames():
    name = any_iface()
    assert link_address(name, MAC, False)[1] == 0
    assert link_address(name, MAC)[4] == MAC


def test_link_address_name_too_long():
    with pytest.raises(SendError, match="too long"):
        link_address("x" * 16, MAC)


def test_link_address_unknown_iface():
    with pytest.raises(SendError):
        link_address("zzmissing0", MAC)


def test_link_address_bad_mac():
    with pytest.raises(SendError):
        link_address(any_iface(), MAC[:4])


def test_send_to_address():
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as rx, socket.socket(
        socket.AF_INET, socket.SOCK_DGRAM
    ) as tx:
        rx.bind(("127.0.0.1", 0))
        rx.settimeout(5)
        sent = PacketSender(tx, rx.getsockname()).send(b"probe")
        assert sent == 5
        assert rx.recv(64) == b"probe"


def test_send_connected_socket():
    a, b = socket.socketpair()
    with a, b:
        assert PacketSender(a).send(b"frame") == 5
        b.settimeout(5)
        assert b.recv(64) == b"frame"


def test_send_descriptor():
    read_fd, write_fd = os.pipe()
    try:
        assert PacketSender(write_fd).send(b"abc") == 3
        assert os.read(read_fd, 16) == b"abc"
    finally:
        os.close(read_fd)
        os.close(write_fd)


def test_send_closed_socket():
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.close()
    with pytest.raises(SendError):
        PacketSender(sock, ("127.0.0.1", 9)).send(b"x")