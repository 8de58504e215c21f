import logging
import socketserver
from typing import Dict, Optional, Union

from ..overrides.resolver import OverrideResolver

logger = logging.getLogger("dnsoverride.server")


class DNSUDPHandler(socketserver.BaseRequestHandler):
    """
    Handles UDP DNS requests.
    This class is instantiated for each incoming datagram, on its own thread
    when served by ThreadingUDPServer.

    Class-level knobs are installed by DNSServer and shared by every request:
      - resolver: OverrideResolver consulted for each question.
      - upstream: {'host': str, 'port': int} used when nothing was answered locally.
      - timeout_ms: upstream relay timeout in milliseconds.

    Example use:
        This handler is used internally by the DNSServer and is not
        typically instantiated directly by users.
    """

    resolver: Optional[OverrideResolver] = None
    upstream: Optional[Dict[str, Union[str, int]]] = None
    timeout_ms: int = 2000

    def handle(self):
        """Process a single UDP DNS query using the shared core resolver.

        Inputs:
          - None (called by socketserver for each UDP datagram).
        Outputs:
          - None; sends at most one DNS response back to the client. Undecodable
            datagrams get no response at all.
        """
        data, sock = self.request
        client_ip = self.client_address[0]

        from . import server as _server_mod

        try:
            wire = _server_mod.resolve_query_bytes(data, client_ip)
        except Exception:  # pragma: no cover
            logger.exception("Unhandled error resolving query from %s", client_ip)
            return
        if not wire:
            return

        try:
            sock.sendto(wire, self.client_address)
        except OSError as exc:
            logger.warning("Failed to send response to %s: %s", client_ip, exc)
