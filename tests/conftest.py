"""Shared test doubles for resolver clients."""
import asyncio
import pytest
from dnslib import QTYPE, RR, A, CNAME
from detox_dns.cache import DetectCache
from detox_dns.exceptions import TransportError


def a_record(name, ip, ttl=60):
    return RR(name, QTYPE.A, rdata=A(ip), ttl=ttl)


def cname_record(name, target, ttl=60):
    return RR(name, QTYPE.CNAME, rdata=CNAME(target), ttl=ttl)


class FakeResolver:
    """
    Scripted stand-in for a resolver client.

    ``records`` maps a fully-qualified name to the answer records returned
    for it; unknown names get an empty answer. ``failures`` maps a name to
    how many exchanges fail with TransportError before it starts answering.
    """

    def __init__(self, name="fake", records=None, failures=None):
        self.name = name
        self.records = records or {}
        self.failures = dict(failures or {})
        self.queries = []

    async def exchange(self, query):
        await asyncio.sleep(0)
        qname = str(query.q.qname)
        self.queries.append(qname)
        remaining = self.failures.get(qname, 0)
        if remaining:
            self.failures[qname] = remaining - 1
            raise TransportError(f"{self.name} unreachable", resolver=self.name)
        reply = query.reply()
        for rr in self.records.get(qname, []):
            reply.add_answer(rr)
        return reply, 0.01


@pytest.fixture
def cache():
    return DetectCache(capacity=16, ttl=300)
