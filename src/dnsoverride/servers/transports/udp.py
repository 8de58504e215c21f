import socket
from typing import Optional


class UDPError(Exception):
    """
    Brief: DNS-over-UDP transport error.

    Inputs:
    - message: description

    Outputs:
    - Exception instance
    """

    pass


def udp_query(
    host: str,
    port: int,
    query: bytes,
    *,
    timeout_ms: int = 2000,
    source_ip: Optional[str] = None,
    max_size: int = 65535,
) -> bytes:
    """
    Brief: Relay raw query bytes to an upstream resolver and return its raw reply.

    Inputs:
    - host: upstream resolver host/IP
    - port: upstream UDP port
    - query: wire-format DNS query bytes, sent unmodified
    - timeout_ms: socket timeout in milliseconds (0 waits indefinitely)
    - source_ip: optional source address to bind
    - max_size: receive buffer size

    Outputs:
    - bytes: wire-format DNS response exactly as received

    Example:
        >>> try:
        ...     udp_query('127.0.0.1', 9, b'\x00\x01', timeout_ms=100)
        ... except UDPError:
        ...     pass
    """
    try:
        family = socket.AF_INET6 if ":" in str(host) else socket.AF_INET
        with socket.socket(family, socket.SOCK_DGRAM) as s:
            if source_ip:
                s.bind((source_ip, 0))
            s.settimeout(timeout_ms / 1000.0 if timeout_ms else None)
            s.connect((host, int(port)))
            s.send(query)
            return s.recv(max_size)
    except OSError as e:
        raise UDPError(f"UDP error talking to {host}:{port}: {e}") from e
