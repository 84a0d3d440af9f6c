"""Routes each query to the local or the secure resolver."""
from typing import Optional
from dnslib import DNSRecord, QTYPE, RCODE
from .cache import Classification
from .config import logger, FALLBACK_TO_SECURE
from .detective import Detective
from .exceptions import TransportError
from .global_metrics import GlobalMetrics


class QueryRouter:
    """
    Per-request entry point.

    Clean hostnames go to the local resolver, polluted ones to the secure
    upstream. A single forwarding attempt is made per query unless
    ``fallback_to_secure`` allows one retry of a failed local forward.
    """

    def __init__(self, detective: Detective, local, secure,
                 metrics: Optional[GlobalMetrics] = None,
                 fallback_to_secure: bool = FALLBACK_TO_SECURE):
        self.detective = detective
        self.local = local
        self.secure = secure
        self.metrics = metrics or GlobalMetrics()
        self.fallback_to_secure = fallback_to_secure

    async def resolve(self, request: DNSRecord) -> Optional[DNSRecord]:
        """
        Resolve an inbound query.

        Returns:
            The upstream answer, or None if resolution failed
        """
        qname = str(request.q.qname)
        qtype = QTYPE[request.q.qtype]

        state = await self.detective.classify(qname)
        client = self.secure if state is Classification.POLLUTED else self.local

        try:
            answer, elapsed = await client.exchange(request)
        except TransportError as e:
            if client is self.secure or not self.fallback_to_secure:
                logger.warning(f"{qname} ({qtype}) via {client.name} resolver failed: {e}")
                self.metrics.record_failure()
                return None
            logger.info(f"{qname} is clean but local resolver failed, trying secure upstream")
            client = self.secure
            try:
                answer, elapsed = await client.exchange(request)
            except TransportError as e:
                logger.warning(f"{qname} ({qtype}) via secure fallback failed: {e}")
                self.metrics.record_failure()
                return None

        logger.info(f"{qname} ({qtype}) is {state.name.lower()}, resolver: {client.name}")
        self.metrics.record_route(client is self.secure, elapsed)
        return answer


def build_reply(request: DNSRecord, answer: Optional[DNSRecord]) -> DNSRecord:
    """
    Reframe an upstream answer as the reply to ``request``.

    The question and id come from the request; sections and rcode come from
    the answer. Without an answer the reply is NXDOMAIN.
    """
    reply = request.reply()
    if answer is None:
        reply.header.rcode = RCODE.NXDOMAIN
        return reply

    reply.rr = list(answer.rr)
    reply.auth = list(answer.auth)
    reply.ar = list(answer.ar)
    reply.header.rcode = answer.header.rcode
    reply.header.aa = answer.header.aa
    return reply
