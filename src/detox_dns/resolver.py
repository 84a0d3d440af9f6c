"""Secure (DNS over TLS / DNS over HTTPS) resolver client."""
import asyncio
import socket
import ssl
import struct
import threading
import time
from collections import OrderedDict
from typing import Optional, Tuple
import httpx
from dnslib import DNSRecord
from .clients import parse_response
from .config import logger, DIAL_TIMEOUT, TLS_VERIFY, TLS_SESSION_CACHE_SIZE
from .exceptions import TransportError
from .upstream_manager import UpstreamManager, UpstreamServer


class TLSSessionCache:
    """Bounded LRU of TLS sessions keyed by server name, for session resumption."""

    def __init__(self, capacity: int = TLS_SESSION_CACHE_SIZE):
        self.capacity = max(1, capacity)
        self._sessions: "OrderedDict[str, ssl.SSLSession]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self):
        with self._lock:
            return len(self._sessions)

    def get(self, server_name: str) -> Optional[ssl.SSLSession]:
        with self._lock:
            session = self._sessions.get(server_name)
            if session is not None:
                self._sessions.move_to_end(server_name)
            return session

    def put(self, server_name: str, session: ssl.SSLSession):
        with self._lock:
            self._sessions[server_name] = session
            self._sessions.move_to_end(server_name)
            while len(self._sessions) > self.capacity:
                self._sessions.popitem(last=False)

    def discard(self, server_name: str):
        with self._lock:
            self._sessions.pop(server_name, None)


def create_tls_context(verify: bool = TLS_VERIFY) -> ssl.SSLContext:
    """
    TLS context for DoT upstreams.

    Without ``verify`` any certificate is accepted: the upstream is trusted by
    its configured address and name rather than by its chain.
    """
    context = ssl.create_default_context()
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    if not verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


def _recv_exactly(sock, length: int) -> bytes:
    buf = b''
    while len(buf) < length:
        chunk = sock.recv(length - len(buf))
        if not chunk:
            raise ConnectionError("Connection closed by upstream")
        buf += chunk
    return buf


class SecureClient:
    """
    Client for the trusted encrypted upstreams.

    Upstreams come from an UpstreamManager. DoT exchanges run a blocking TLS
    socket in a worker thread so that ``ssl`` session resumption can be used;
    DoH exchanges go through an ``httpx.AsyncClient``. There is no internal
    retry; each failure is recorded against the upstream and raised.
    """

    def __init__(
        self,
        upstream_manager: UpstreamManager,
        timeout: float = DIAL_TIMEOUT,
        verify: bool = TLS_VERIFY,
        session_cache_size: int = TLS_SESSION_CACHE_SIZE,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.upstream_manager = upstream_manager
        self.timeout = timeout
        self.ssl_context = create_tls_context(verify)
        self.sessions = TLSSessionCache(session_cache_size)
        self.http_client = http_client
        self.name = "secure"

    async def exchange(self, query: DNSRecord) -> Tuple[DNSRecord, float]:
        """
        Resolve ``query`` through the next available secure upstream.

        Returns:
            Tuple of (parsed_response, elapsed_seconds)

        Raises:
            TransportError: if no upstream is available or the exchange failed
        """
        upstream = await self.upstream_manager.get_next_server()
        if not upstream:
            raise TransportError("No secure upstream servers available")

        data = query.pack()
        start_time = time.monotonic()
        try:
            if upstream.scheme == 'https':
                raw = await self._exchange_https(upstream, data)
            else:
                raw = await asyncio.to_thread(self._exchange_tls, upstream, data)
            response = parse_response(raw, query, upstream.address)
        except TransportError as e:
            upstream.record_failure()
            logger.error(f"Secure request to {upstream.address} failed: {e}")
            raise

        elapsed = time.monotonic() - start_time
        upstream.record_success(elapsed)
        return response, elapsed

    def _exchange_tls(self, upstream: UpstreamServer, data: bytes) -> bytes:
        session = self.sessions.get(upstream.host)
        try:
            with socket.create_connection((upstream.ip, upstream.port), timeout=self.timeout) as sock:
                with self.ssl_context.wrap_socket(
                    sock, server_hostname=upstream.host, session=session
                ) as tls:
                    tls.sendall(struct.pack('!H', len(data)) + data)
                    length = struct.unpack('!H', _recv_exactly(tls, 2))[0]
                    raw = _recv_exactly(tls, length)
                    if tls.session is not None:
                        self.sessions.put(upstream.host, tls.session)
                    if session is not None and not tls.session_reused:
                        logger.debug(f"TLS session for {upstream.host} was not resumed")
                    return raw
        except (OSError, ValueError) as e:
            # ssl.SSLError and socket.timeout are both OSError
            self.sessions.discard(upstream.host)
            raise TransportError(f"DoT exchange with {upstream.address} failed: {e}",
                                 resolver=upstream.address) from e

    async def _exchange_https(self, upstream: UpstreamServer, data: bytes) -> bytes:
        if self.http_client is None:
            raise TransportError(f"No HTTP client configured for DoH upstream {upstream.address}",
                                 resolver=upstream.address)
        headers = {
            "Content-Type": "application/dns-message",
            "Accept": "application/dns-message"
        }
        try:
            resp = await self.http_client.post(upstream.url, content=data, headers=headers,
                                               timeout=self.timeout)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise TransportError(f"DoH request to {upstream.address} failed: {e}",
                                 resolver=upstream.address) from e
        return resp.content

    async def aclose(self):
        if self.http_client is not None:
            await self.http_client.aclose()
