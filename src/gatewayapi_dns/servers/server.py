"""DNS wire handling and UDP/TCP listeners answering from a RecordStore.

Brief:
  - resolve_query_bytes() turns one wire-format query into a wire-format
    response: one A answer per matching record, NXDOMAIN when a question has
    no match.
  - DNSServer runs socketserver threading listeners for UDP and (optionally)
    TCP. Transport notifications go to explicit callbacks instead of being
    hard-wired to logging.
"""

from __future__ import annotations

import logging
import socketserver
import threading
from typing import Callable, List, Optional

from dnslib import QTYPE, RCODE, RR, A, DNSHeader, DNSRecord

from ..config.logging_config import TRACE
from ..records import RecordStore

logger = logging.getLogger(__name__)

ResponseCallback = Callable[[bytes, bytes, str], None]
ErrorCallback = Callable[[BaseException, str], None]


def build_response(request: DNSRecord, store: RecordStore) -> DNSRecord:
    """Brief: Answer every question of a parsed request from the store.

    Inputs:
      - request: Parsed dnslib DNSRecord.
      - store: RecordStore to resolve against.

    Outputs:
      - DNSRecord reply with authoritative answers, or rcode NXDOMAIN when a
        question matched nothing.
    """

    reply = DNSRecord(
        DNSHeader(id=request.header.id, qr=1, aa=1, ra=0, rd=request.header.rd),
        questions=list(request.questions),
    )

    for question in request.questions:
        qname = str(question.qname)
        records = store.resolve(qname, int(question.qtype))
        if not records:
            reply.header.rcode = RCODE.NXDOMAIN
            continue
        for record in records:
            reply.add_answer(
                RR(
                    rname=question.qname,
                    rtype=QTYPE.A,
                    rclass=1,
                    ttl=int(record.ttl),
                    rdata=A(record.address),
                )
            )
    return reply


def resolve_query_bytes(data: bytes, store: RecordStore) -> bytes:
    """Resolve a single DNS wire query and return the wire response.

    Inputs:
      - data: Wire-format DNS query bytes.
      - store: RecordStore to answer from.
    Outputs:
      - bytes: Wire-format response; b"" when the query cannot be parsed (the
        listener then sends nothing).

    Example:
      >>> store = RecordStore()
      >>> _ = store.add_record("res-1", "a.example.com", "10.0.0.5")
      >>> q = DNSRecord.question("a.example.com", "A")
      >>> str(DNSRecord.parse(resolve_query_bytes(q.pack(), store)).rr[0].rdata)
      '10.0.0.5'
    """
    try:
        request = DNSRecord.parse(data)
    except Exception as exc:
        logger.warning("Dropping unparseable DNS query (%d bytes): %s", len(data), exc)
        return b""

    try:
        return build_response(request, store).pack()
    except Exception:
        logger.exception("Error resolving %s", [str(q.qname) for q in request.questions])
        r = request.reply()
        r.header.rcode = RCODE.SERVFAIL
        return r.pack()


def _default_on_response(request: bytes, response: bytes, client_ip: str) -> None:
    if logger.isEnabledFor(TRACE):
        logger.log(
            TRACE,
            "%s: %s => %s",
            client_ip,
            DNSRecord.parse(request).q,
            DNSRecord.parse(response).header,
        )


def _default_on_error(exc: BaseException, client_ip: str) -> None:
    logger.error("Errored handling query from %s: %s", client_ip, exc, exc_info=exc)


class _DNSRequestMixin:
    """Shared per-request plumbing for the UDP and TCP handlers."""

    # Bound per server instance in DNSServer._make_handler.
    store: RecordStore
    on_response: ResponseCallback
    on_error: ErrorCallback

    def _answer(self, data: bytes, client_ip: str) -> bytes:
        wire = resolve_query_bytes(data, self.store)
        if wire:
            try:
                self.on_response(data, wire, client_ip)
            except Exception:  # pragma: no cover - observer bugs must not drop answers
                logger.exception("on_response callback failed")
        return wire


class DNSUDPHandler(_DNSRequestMixin, socketserver.BaseRequestHandler):
    """
    Handles UDP DNS requests.
    This class is instantiated for each incoming datagram.
    """

    def handle(self) -> None:
        data, sock = self.request
        client_ip = self.client_address[0]
        try:
            wire = self._answer(data, client_ip)
            if wire:
                sock.sendto(wire, self.client_address)
        except Exception as exc:
            self.on_error(exc, client_ip)


def _recv_exact(sock, length: int) -> bytes:
    buf = b""
    while len(buf) < length:
        chunk = sock.recv(length - len(buf))
        if not chunk:
            break
        buf += chunk
    return buf


class DNSTCPHandler(_DNSRequestMixin, socketserver.BaseRequestHandler):
    """Handles DNS-over-TCP connections (2-byte length framing, RFC 1035 4.2.2)."""

    def handle(self) -> None:
        sock = self.request
        client_ip = self.client_address[0]
        try:
            while True:
                hdr = _recv_exact(sock, 2)
                if len(hdr) != 2:
                    return
                length = int.from_bytes(hdr, "big")
                data = _recv_exact(sock, length)
                if len(data) != length:
                    return
                wire = self._answer(data, client_ip)
                if not wire:
                    return
                sock.sendall(len(wire).to_bytes(2, "big") + wire)
        except Exception as exc:
            self.on_error(exc, client_ip)


class _ThreadingUDPServer(socketserver.ThreadingUDPServer):
    allow_reuse_address = True
    daemon_threads = True


class _ThreadingTCPServer(socketserver.ThreadingTCPServer):
    allow_reuse_address = True
    daemon_threads = True


class DNSServer:
    """UDP (and optional TCP) DNS listener pair answering from a RecordStore.

    Example use:
        >>> server = DNSServer("127.0.0.1", 5353, RecordStore())  # doctest: +SKIP
        >>> server.serve_forever()  # doctest: +SKIP
        >>> server.stop()  # doctest: +SKIP
    """

    def __init__(
        self,
        host: str,
        port: int,
        store: RecordStore,
        *,
        tcp: bool = True,
        on_response: Optional[ResponseCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        """Bind the listeners.

        Inputs:
            host: Address to listen on.
            port: Port to listen on (0 picks a free port for UDP; TCP then
                binds the same port).
            store: RecordStore answering queries.
            tcp: Also listen on TCP.
            on_response: Called with (request, response, client_ip) for each
                answered query.
            on_error: Called with (exception, client_ip) when handling fails.
        """
        self.store = store
        self._threads: List[threading.Thread] = []
        self.servers: List[socketserver.BaseServer] = []

        callbacks = {
            "store": store,
            "on_response": staticmethod(on_response or _default_on_response),
            "on_error": staticmethod(on_error or _default_on_error),
        }
        udp_handler = type("BoundDNSUDPHandler", (DNSUDPHandler,), callbacks)
        tcp_handler = type("BoundDNSTCPHandler", (DNSTCPHandler,), callbacks)

        try:
            self.udp_server = _ThreadingUDPServer((host, int(port)), udp_handler)
            self.servers.append(self.udp_server)
            bound_port = self.udp_server.server_address[1]
            self.tcp_server: Optional[_ThreadingTCPServer] = None
            if tcp:
                self.tcp_server = _ThreadingTCPServer((host, bound_port), tcp_handler)
                self.servers.append(self.tcp_server)
        except OSError as e:
            if isinstance(e, PermissionError):
                logger.error(
                    "Permission denied when binding to %s:%d. Try a port >1024 or run with elevated privileges. Original error: %s",
                    host,
                    int(port),
                    e,
                )
            self.stop()
            raise

        self.host = host
        self.port = bound_port
        logger.debug("DNS server bound to %s:%d (tcp=%s)", host, bound_port, tcp)

    def serve_forever(self) -> None:
        """Start every listener on its own daemon thread and return."""
        for srv in self.servers:
            t = threading.Thread(
                target=srv.serve_forever,
                name=f"DNSServer-{type(srv).__name__}",
                daemon=True,
            )
            t.start()
            self._threads.append(t)
        logger.info("DNS Server listening on %s:%d", self.host, self.port)

    def stop(self) -> None:
        """Request graceful shutdown and close the listening sockets."""
        for srv in self.servers:
            if self._threads:
                try:
                    srv.shutdown()
                except Exception:  # pragma: no cover - defensive shutdown path
                    logger.exception("Error while shutting down DNS listener")
            try:
                srv.server_close()
            except Exception:  # pragma: no cover - defensive shutdown path
                logger.exception("Error while closing DNS listener socket")
        self._threads = []
