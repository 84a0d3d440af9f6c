"""Unit tests for the server module."""
import asyncio
import pytest
from unittest.mock import Mock, AsyncMock, patch
from dnslib import DNSRecord, DNSHeader, RCODE
from detox_dns.cache import Classification
from detox_dns.detective import Detective
from detox_dns.router import QueryRouter
from detox_dns.server import process_query, worker, stats_task
from conftest import FakeResolver, a_record, cname_record


@pytest.fixture
def router(cache):
    honeypot = FakeResolver("honeypot", {
        "blocked.example.": [a_record("blocked.example", "10.10.10.10")],
    })
    local = FakeResolver("local", {
        "clean.example.": [a_record("clean.example", "1.2.3.4")],
        "alias.example.": [
            cname_record("alias.example", "blocked.example"),
            a_record("blocked.example", "10.10.10.10"),
        ],
    })
    secure = FakeResolver("secure", {
        "blocked.example.": [a_record("blocked.example", "93.184.216.34")],
        "alias.example.": [
            cname_record("alias.example", "blocked.example"),
            a_record("blocked.example", "93.184.216.34"),
        ],
    })
    return QueryRouter(Detective(cache, honeypot, local), local, secure)


@pytest.mark.asyncio
async def test_clean_query_end_to_end(router):
    request = DNSRecord.question("clean.example", "A")

    response = DNSRecord.parse(await process_query(request.pack(), router))

    assert response.header.id == request.header.id
    assert [str(rr.rdata) for rr in response.rr] == ["1.2.3.4"]
    assert router.secure.queries == []


@pytest.mark.asyncio
async def test_blocked_query_end_to_end(router, cache):
    request = DNSRecord.question("blocked.example", "A")

    response = DNSRecord.parse(await process_query(request.pack(), router))

    assert [str(rr.rdata) for rr in response.rr] == ["93.184.216.34"]
    assert router.secure.queries == ["blocked.example."]
    assert cache.get("blocked.example.") is Classification.POLLUTED


@pytest.mark.asyncio
async def test_alias_of_blocked_end_to_end(router, cache):
    cache.put("blocked.example.", Classification.POLLUTED)
    request = DNSRecord.question("alias.example", "A")

    response = DNSRecord.parse(await process_query(request.pack(), router))

    assert cache.get("alias.example.") is Classification.POLLUTED
    assert router.secure.queries == ["alias.example."]
    assert str(response.rr[-1].rdata) == "93.184.216.34"


@pytest.mark.asyncio
async def test_resolution_failure_is_nxdomain(router):
    router.secure.failures["blocked.example."] = 1
    request = DNSRecord.question("blocked.example", "A")

    response = DNSRecord.parse(await process_query(request.pack(), router))

    assert response.header.id == request.header.id
    assert response.header.rcode == RCODE.NXDOMAIN
    assert str(response.q.qname) == "blocked.example."


@pytest.mark.asyncio
async def test_query_without_question_is_formerr(router):
    request = DNSRecord(DNSHeader(id=4242))

    response = DNSRecord.parse(await process_query(request.pack(), router))

    assert response.header.id == 4242
    assert response.header.rcode == RCODE.FORMERR


@pytest.mark.asyncio
async def test_invalid_packet_is_dropped(router):
    assert await process_query(b"not_a_valid_dns_packet", router) is None


@pytest.mark.asyncio
async def test_worker_sends_reply(router):
    """Test worker answering a queued datagram."""
    queue = asyncio.Queue()
    request = DNSRecord.question("clean.example", "A")
    transport = Mock()
    addr = ("127.0.0.1", 12345)
    await queue.put((request.pack(), addr, transport))

    worker_task = asyncio.create_task(worker("test-worker", queue, router))
    await queue.join()
    worker_task.cancel()
    try:
        await worker_task
    except asyncio.CancelledError:
        pass

    transport.sendto.assert_called_once()
    sent_data, sent_addr = transport.sendto.call_args[0]
    assert sent_addr == addr
    assert DNSRecord.parse(sent_data).header.id == request.header.id


@pytest.mark.asyncio
async def test_worker_survives_invalid_packet(router):
    queue = asyncio.Queue()
    transport = Mock()
    await queue.put((b"not_a_valid_dns_packet", ("10.0.0.1", 8888), transport))

    worker_task = asyncio.create_task(worker("test-worker", queue, router))
    await queue.join()
    worker_task.cancel()
    try:
        await worker_task
    except asyncio.CancelledError:
        pass

    transport.sendto.assert_not_called()


@pytest.mark.asyncio
async def test_worker_task_done_on_error():
    """Test that worker still answers NXDOMAIN and calls task_done when routing raises."""
    queue = asyncio.Queue()
    broken_router = Mock()
    broken_router.resolve = AsyncMock(side_effect=RuntimeError("boom"))
    transport = Mock()
    request = DNSRecord.question("x.example", "A")
    await queue.put((request.pack(), ("127.0.0.1", 1), transport))

    worker_task = asyncio.create_task(worker("test-worker", queue, broken_router))
    await asyncio.wait_for(queue.join(), timeout=2)
    worker_task.cancel()
    try:
        await worker_task
    except asyncio.CancelledError:
        pass

    transport.sendto.assert_called_once()
    reply = DNSRecord.parse(transport.sendto.call_args[0][0])
    assert reply.header.id == request.header.id
    assert reply.header.rcode == RCODE.NXDOMAIN


@pytest.mark.asyncio
async def test_stats_task_logs_periodically():
    engine = Mock()
    with patch('asyncio.sleep', new_callable=AsyncMock) as mock_sleep:
        mock_sleep.side_effect = [None, asyncio.CancelledError()]

        with pytest.raises(asyncio.CancelledError):
            await stats_task(engine, interval=300)

    engine.secure.upstream_manager.log_stats.assert_called_once()
    engine.metrics.log_stats.assert_called_once_with(engine.cache)
    mock_sleep.assert_called_with(300)


@pytest.mark.asyncio
async def test_unexpected_routing_error_answers_nxdomain():
    broken_router = Mock()
    broken_router.resolve = AsyncMock(side_effect=ValueError("unexpected"))
    request = DNSRecord.question("x.example", "A")

    response = DNSRecord.parse(await process_query(request.pack(), broken_router))

    assert response.header.id == request.header.id
    assert response.header.rcode == RCODE.NXDOMAIN
    assert str(response.q.qname) == "x.example."
