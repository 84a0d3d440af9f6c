"""Plain DNS clients for the honeypot and local resolvers."""
import asyncio
import socket
import struct
import time
from typing import Tuple
from dnslib import DNSRecord
from dnslib.dns import DNSError
from .bootstrap import split_host_port
from .config import logger, QUERY_TIMEOUT
from .exceptions import TransportError


def parse_response(raw: bytes, query: DNSRecord, resolver: str) -> DNSRecord:
    """
    Parse an upstream reply and check that it answers ``query``.

    Raises:
        TransportError: on an empty, unparsable or mismatching reply
    """
    if not raw:
        raise TransportError(f"Empty response from {resolver}", resolver=resolver)
    try:
        response = DNSRecord.parse(raw)
    except DNSError as e:
        raise TransportError(f"Malformed response from {resolver}: {e}", resolver=resolver) from e
    if response.header.id != query.header.id:
        raise TransportError(
            f"Response id {response.header.id} from {resolver} does not match query id {query.header.id}",
            resolver=resolver,
        )
    return response


class _DatagramExchange(asyncio.DatagramProtocol):
    """Sends one query and resolves a future with the first matching datagram."""

    def __init__(self, data: bytes, on_response: asyncio.Future):
        self.data = data
        self.on_response = on_response
        self.transport = None

    def connection_made(self, transport):
        self.transport = transport
        transport.sendto(self.data)

    def datagram_received(self, data, addr):
        # Ignore stray datagrams carrying another message id
        if data[:2] != self.data[:2]:
            return
        if not self.on_response.done():
            self.on_response.set_result(data)

    def error_received(self, exc):
        if not self.on_response.done():
            self.on_response.set_exception(exc)

    def connection_lost(self, exc):
        if exc and not self.on_response.done():
            self.on_response.set_exception(exc)


class PlainClient:
    """
    Unencrypted DNS client bound to one resolver address.

    Each exchange opens its own socket, so one instance can be shared by any
    number of concurrent tasks. Truncated UDP replies are retried over TCP.
    """

    def __init__(self, address: str, name: str = "plain", timeout: float = QUERY_TIMEOUT):
        self.address = address
        self.host, self.port = split_host_port(address, 53)
        self.name = name
        self.timeout = timeout

    def __repr__(self):
        return f"PlainClient({self.name}, {self.host}:{self.port})"

    async def exchange(self, query: DNSRecord) -> Tuple[DNSRecord, float]:
        """
        Send ``query`` and wait for the reply.

        Returns:
            Tuple of (parsed_response, elapsed_seconds)

        Raises:
            TransportError: on timeout, socket error or unusable reply
        """
        data = query.pack()
        start_time = time.monotonic()

        raw = await self._exchange_udp(data)
        response = parse_response(raw, query, self.address)
        if response.header.tc:
            logger.debug(f"Truncated reply from {self.name} resolver, retrying over TCP")
            raw = await self._exchange_tcp(data)
            response = parse_response(raw, query, self.address)

        return response, time.monotonic() - start_time

    async def _exchange_udp(self, data: bytes) -> bytes:
        loop = asyncio.get_running_loop()
        on_response = loop.create_future()
        family = socket.AF_INET6 if ':' in self.host else socket.AF_INET
        transport = None
        try:
            transport, _ = await loop.create_datagram_endpoint(
                lambda: _DatagramExchange(data, on_response),
                remote_addr=(self.host, self.port),
                family=family,
            )
            return await asyncio.wait_for(on_response, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise TransportError(f"Timeout querying {self.name} resolver {self.address}", resolver=self.address) from e
        except OSError as e:
            raise TransportError(f"UDP error querying {self.name} resolver {self.address}: {e}", resolver=self.address) from e
        finally:
            if transport is not None:
                transport.close()

    async def _exchange_tcp(self, data: bytes) -> bytes:
        writer = None
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port), timeout=self.timeout
            )
            writer.write(struct.pack('!H', len(data)) + data)
            await writer.drain()
            length_bytes = await asyncio.wait_for(reader.readexactly(2), timeout=self.timeout)
            length = struct.unpack('!H', length_bytes)[0]
            return await asyncio.wait_for(reader.readexactly(length), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise TransportError(f"Timeout querying {self.name} resolver {self.address} over TCP", resolver=self.address) from e
        except (OSError, asyncio.IncompleteReadError) as e:
            raise TransportError(f"TCP error querying {self.name} resolver {self.address}: {e}", resolver=self.address) from e
        finally:
            if writer is not None:
                writer.close()
