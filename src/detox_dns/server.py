"""Main server implementation with worker pool."""
import asyncio
import functools
import signal
from typing import Optional
from dnslib import DNSRecord, DNSHeader, QTYPE, RCODE
from dnslib.dns import DNSError
from .config import (
    logger, LISTEN_HOST, LISTEN_PORT, TCP_ENABLED, WORKER_COUNT, QUEUE_SIZE,
    CACHE_SWEEP_INTERVAL, HEALTH_ENABLED, HEALTH_HOST, HEALTH_PORT, STATS_INTERVAL,
)
from .engine import Engine
from .health import start_health_server
from .protocol import DNSProtocol, serve_tcp_client
from .router import QueryRouter, build_reply
from .supervisor import cache_supervisor, sweep


async def process_query(data: bytes, router: QueryRouter) -> Optional[bytes]:
    """
    Answer one raw DNS query.

    Returns:
        Packed reply, or None if the packet could not be parsed.
        A query that fails to resolve for any reason is answered NXDOMAIN.
    """
    try:
        request = DNSRecord.parse(data)
    except DNSError as e:
        logger.debug(f"Dropping unparsable DNS packet: {e}")
        return None

    if not request.questions:
        reply = DNSRecord(DNSHeader(id=request.header.id, qr=1, rcode=RCODE.FORMERR))
        return reply.pack()

    try:
        answer = await router.resolve(request)
    except Exception as e:
        logger.error(f"Resolving {request.q.qname} failed unexpectedly: {e}")
        answer = None
    if answer is None:
        logger.debug(f"Answering {request.q.qname} ({QTYPE[request.q.qtype]}) with NXDOMAIN")
    return build_reply(request, answer).pack()


async def worker(name, queue, router):
    """
    Worker that consumes packets from queue and processes them.

    Args:
        name: Worker identifier for logging
        queue: Asyncio queue containing DNS requests
        router: Query router
    """
    logger.debug(f"Worker {name} started")
    while True:
        data, addr, transport = await queue.get()

        try:
            response_bytes = await process_query(data, router)
            if response_bytes:
                transport.sendto(response_bytes, addr)
        except Exception as e:
            logger.error(f"Worker processing error: {e}")
        finally:
            queue.task_done()


async def stats_task(engine, interval=STATS_INTERVAL):
    """
    Periodically logs statistics about secure upstreams and global metrics.

    Args:
        engine: Engine whose metrics, cache and upstreams are reported
        interval: Seconds between log lines
    """
    while True:
        await asyncio.sleep(interval)
        engine.secure.upstream_manager.log_stats()
        engine.metrics.log_stats(engine.cache)


async def main():
    """Main server entry point."""
    engine = Engine.from_config()
    router = engine.router

    queue = asyncio.Queue(maxsize=QUEUE_SIZE)
    loop = asyncio.get_running_loop()

    udp_transport, _ = await loop.create_datagram_endpoint(
        lambda: DNSProtocol(queue),
        local_addr=(LISTEN_HOST, LISTEN_PORT)
    )

    tcp_server = None
    if TCP_ENABLED:
        handler = functools.partial(process_query, router=router)
        tcp_server = await asyncio.start_server(
            lambda r, w: serve_tcp_client(r, w, handler),
            LISTEN_HOST, LISTEN_PORT
        )
        logger.info(f"TCP Server listening on {LISTEN_HOST}:{LISTEN_PORT}")

    health_runner = None
    if HEALTH_ENABLED:
        try:
            health_runner = await start_health_server(HEALTH_HOST, HEALTH_PORT)
        except OSError as e:
            logger.error(f"Health endpoint could not start: {e}")

    tasks = []
    for i in range(WORKER_COUNT):
        tasks.append(asyncio.create_task(worker(f"w-{i}", queue, router)))

    tasks.append(asyncio.create_task(
        cache_supervisor(engine.cache, engine.cache_file, CACHE_SWEEP_INTERVAL)
    ))
    tasks.append(asyncio.create_task(stats_task(engine)))

    # Graceful Shutdown handling
    stop_event = asyncio.Event()
    def signal_handler():
        logger.info("Shutdown signal received.")
        stop_event.set()

    try:
        loop.add_signal_handler(signal.SIGTERM, signal_handler)
        loop.add_signal_handler(signal.SIGINT, signal_handler)
    except NotImplementedError:
        logger.warning("Signal handlers not supported on this platform. This is expected on Windows systems.")

    await stop_event.wait()

    logger.info("Stopping listeners...")
    udp_transport.close()
    if tcp_server is not None:
        tcp_server.close()
        await tcp_server.wait_closed()
    if health_runner is not None:
        await health_runner.cleanup()

    logger.info("Cancelling workers...")
    for task in tasks:
        task.cancel()

    await asyncio.gather(*tasks, return_exceptions=True)

    logger.info("Persisting detection cache...")
    sweep(engine.cache, engine.cache_file)
    await engine.aclose()
