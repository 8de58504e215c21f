import logging
import socketserver
from typing import Dict, List, Optional, Union

from dnslib import OPCODE, RCODE, RR, DNSHeader, DNSRecord

from ..overrides.resolver import OverrideResolver
from .transports.udp import UDPError, udp_query
from .udp_server import DNSUDPHandler

logger = logging.getLogger("dnsoverride.server")


def build_local_response(request: DNSRecord, answers: List[RR]) -> DNSRecord:
    """Brief: Build the locally answered response for a request.

    Inputs:
      - request: Parsed DNS request.
      - answers: Answer RRs collected across all questions, in question order.

    Outputs:
      - DNSRecord echoing the request id and question section, with QR and RD set.
    """
    header = DNSHeader(id=request.header.id, qr=1, rd=1, opcode=OPCODE.QUERY)
    reply = DNSRecord(header, questions=list(request.questions))
    for rr in answers:
        reply.add_answer(rr)
    return reply


def _make_servfail_response(request: DNSRecord) -> bytes:
    """
    Create SERVFAIL response for the given request.

    Inputs:
        - request (DNSRecord): Original DNS request.

    Outputs:
        - response_wire (bytes): SERVFAIL response wire data with the request id.
    """
    r = request.reply()
    r.header.rcode = RCODE.SERVFAIL
    return r.pack()


def forward_upstream(data: bytes, request: DNSRecord, client_ip: str) -> bytes:
    """Brief: Relay the original query bytes upstream and return the raw reply.

    Inputs:
      - data: Original inbound query bytes (sent verbatim).
      - request: Parsed request, used only to synthesize SERVFAIL on failure.
      - client_ip: Client address for logging.

    Outputs:
      - bytes: Upstream reply exactly as received, or a SERVFAIL response when
        no upstream is configured or the relay fails.
    """
    upstream = DNSUDPHandler.upstream
    if not upstream:
        logger.warning("No upstream configured; SERVFAIL for %s", client_ip)
        return _make_servfail_response(request)

    host = str(upstream["host"])
    port = int(upstream.get("port", 53))
    try:
        reply = udp_query(host, port, data, timeout_ms=DNSUDPHandler.timeout_ms)
    except UDPError as exc:
        logger.warning("Upstream %s:%d failed for %s: %s", host, port, client_ip, exc)
        return _make_servfail_response(request)
    logger.debug("Relayed query from %s via %s:%d", client_ip, host, port)
    return reply


def resolve_query_bytes(data: bytes, client_ip: str) -> Optional[bytes]:
    """Resolve a single DNS wire query and return the wire response.

    Inputs:
      - data: Wire-format DNS query bytes.
      - client_ip: String client IP for logging.
    Outputs:
      - bytes: Wire-format DNS response, or None when the datagram cannot be
        decoded and must be dropped.

    Every question is offered to DNSUDPHandler.resolver. When at least one
    answer is produced across all questions the local response is returned and
    upstream is not contacted; otherwise the original bytes are relayed to the
    upstream and its reply is returned unmodified.

    Example:
      >>> resp = resolve_query_bytes(query_bytes, '127.0.0.1')
    """
    try:
        request = DNSRecord.parse(data)
    except Exception as exc:
        logger.debug("Dropping undecodable datagram from %s: %s", client_ip, exc)
        return None

    resolver = DNSUDPHandler.resolver
    if resolver is None or request.header.qr or request.header.opcode != OPCODE.QUERY:
        return forward_upstream(data, request, client_ip)

    answers: List[RR] = []
    for question in request.questions:
        logger.debug(
            "Query from %s: %s %s", client_ip, question.qname, question.qtype
        )
        try:
            outcome = resolver.resolve(question.qname, question.qtype)
        except Exception:  # pragma: no cover
            logger.exception("Override resolution failed for %s", question.qname)
            continue
        if outcome.answered:
            logger.info(
                "Answered %s %s locally with %d records",
                question.qname,
                question.qtype,
                len(outcome.records),
            )
            answers.extend(outcome.records)

    if answers:
        try:
            return build_local_response(request, answers).pack()
        except Exception:
            logger.exception("Failed to encode local response; relaying upstream")

    return forward_upstream(data, request, client_ip)


class DNSServer:
    """A UDP DNS server answering from the override set.

    Example use:
        >>> import threading
        >>> server = DNSServer("127.0.0.1", 5355, resolver, {"host": "1.1.1.1", "port": 53})
        >>> server_thread = threading.Thread(target=server.serve_forever, daemon=True)
        >>> server_thread.start()
        >>> server.stop()
    """

    def __init__(
        self,
        host: str,
        port: int,
        resolver: OverrideResolver,
        upstream: Optional[Dict[str, Union[str, int]]],
        timeout_ms: int = 2000,
    ) -> None:
        """Initialize a UDP DNSServer.

        Inputs:
            host: The host to listen on.
            port: The port to listen on.
            resolver: OverrideResolver consulted for each question.
            upstream: Upstream resolver {'host', 'port'} for unanswered queries.
            timeout_ms: Upstream relay timeout in milliseconds.

        Raises:
            OSError: When the listening socket cannot be bound.
        """
        DNSUDPHandler.resolver = resolver
        DNSUDPHandler.upstream = upstream
        DNSUDPHandler.timeout_ms = max(0, int(timeout_ms))
        try:
            self.server = socketserver.ThreadingUDPServer((host, port), DNSUDPHandler)
        except PermissionError as e:
            logger.error(
                "Permission denied when binding to %s:%d. Try a port >1024 or run with elevated privileges. Original error: %s",
                host,
                port,
                e,
            )
            raise
        except OSError as e:
            logger.error("Failed to bind UDP listener on %s:%d: %s", host, port, e)
            raise

        # Ensure request handler threads do not block shutdown
        self.server.daemon_threads = True
        logger.debug("DNS UDP server bound to %s:%d", host, port)

    @property
    def address(self):
        return self.server.server_address

    def serve_forever(self) -> None:
        """Start the UDP server loop and listen for requests.

        Inputs:
          - None
        Outputs:
          - None; runs until shutdown is requested or KeyboardInterrupt occurs.
        """
        try:
            self.server.serve_forever()
        except KeyboardInterrupt:
            pass

    def stop(self) -> None:
        """Request graceful shutdown and close the underlying UDP socket.

        Inputs:
          - None
        Outputs:
          - None; best-effort shutdown suitable for use from signal handlers.
        """
        try:
            self.server.shutdown()
        except Exception:  # pragma: no cover
            logger.exception("Error while shutting down UDP server")
        try:
            self.server.server_close()
        except Exception:  # pragma: no cover
            logger.exception("Error while closing UDP server socket")
