"""UDP and TCP DNS listeners."""
import asyncio
import struct
from .config import logger, LISTEN_HOST, LISTEN_PORT

TCP_IDLE_TIMEOUT = 10.0


class DNSProtocol(asyncio.DatagramProtocol):
    """UDP Protocol handler for DNS requests."""

    def __init__(self, queue):
        self.queue = queue
        self.transport = None

    def connection_made(self, transport):
        """Called when connection is established."""
        self.transport = transport
        logger.info(f"UDP Server listening on {LISTEN_HOST}:{LISTEN_PORT}")

    def datagram_received(self, data, addr):
        """Called when a UDP datagram is received."""
        try:
            # Non-blocking put. If queue is full, we drop packet to save memory.
            self.queue.put_nowait((data, addr, self.transport))
        except asyncio.QueueFull:
            logger.warning("Queue full! Dropping DNS packet.")


async def serve_tcp_client(reader, writer, handler, idle_timeout: float = TCP_IDLE_TIMEOUT):
    """
    Serve length-prefixed DNS messages on one TCP connection.

    Args:
        reader: Stream reader of the connection
        writer: Stream writer of the connection
        handler: Coroutine function mapping raw query bytes to reply bytes or None
        idle_timeout: Seconds to wait for the next message before closing
    """
    peer = writer.get_extra_info('peername')
    try:
        while True:
            length_bytes = await asyncio.wait_for(reader.readexactly(2), timeout=idle_timeout)
            length = struct.unpack('!H', length_bytes)[0]
            data = await asyncio.wait_for(reader.readexactly(length), timeout=idle_timeout)

            response = await handler(data)
            if response:
                writer.write(struct.pack('!H', len(response)) + response)
                await writer.drain()
    except (asyncio.IncompleteReadError, asyncio.TimeoutError, ConnectionError):
        pass
    except Exception as e:
        logger.error(f"TCP client {peer} error: {e}")
    finally:
        writer.close()
