"""
Pollution detection.

A hostname is classified by probing two resolvers:

1. The honeypot, a resolver that has no business answering for the name.
   Any answer it gives was forged in transit, so the name is POLLUTED.
2. The local resolver. Every CNAME target in its answer is classified in
   turn; one polluted link makes the whole chain POLLUTED. A chain of
   clean links is CLEAN.

Transport failures, and an empty answer from the local resolver, are
retried a bounded number of times. When retries run out the verdict is
POLLUTED so that the query takes the trusted path.
"""
import asyncio
from typing import Dict, Optional, Tuple
from dnslib import DNSRecord, QTYPE
from .cache import Classification, DetectCache, normalize_hostname
from .clients import PlainClient
from .config import logger, DETECT_RETRIES, MAX_CNAME_DEPTH
from .exceptions import TransportError


def cname_target(rr) -> Optional[str]:
    """Return the normalized target of a CNAME record, or None if unusable."""
    label = getattr(rr.rdata, 'label', None)
    if label is None:
        return None
    try:
        target = str(label)
    except Exception:
        return None
    if not target or target == '.':
        return None
    return normalize_hostname(target)


class Detective:
    """
    Classifies hostnames as CLEAN or POLLUTED and memoizes the verdicts.

    Concurrent ``classify`` calls for the same uncached hostname share one
    detection. CNAME validation goes through ``_classify`` directly and never
    waits on another detection, so chains that loop across queries cannot
    deadlock.
    """

    def __init__(
        self,
        cache: DetectCache,
        honeypot: PlainClient,
        local: PlainClient,
        max_retries: int = DETECT_RETRIES,
        max_cname_depth: int = MAX_CNAME_DEPTH,
    ):
        self.cache = cache
        self.honeypot = honeypot
        self.local = local
        self.max_retries = max_retries
        self.max_cname_depth = max_cname_depth
        self._inflight: Dict[str, asyncio.Future] = {}

    async def classify(self, hostname: str) -> Classification:
        """Classify ``hostname``, from cache when possible."""
        hostname = normalize_hostname(hostname)

        state = self.cache.get(hostname)
        if state is not None:
            logger.debug(f"Cached detect result: {hostname} = {state.name}")
            return state

        pending = self._inflight.get(hostname)
        if pending is not None:
            logger.debug(f"Joining in-flight detection of {hostname}")
            try:
                return await asyncio.shield(pending)
            except Exception:
                return Classification.POLLUTED

        task = asyncio.ensure_future(self._classify(hostname))
        self._inflight[hostname] = task
        task.add_done_callback(lambda t: self._forget(hostname, t))
        try:
            return await asyncio.shield(task)
        except Exception as e:
            logger.error(f"Detection for {hostname} crashed: {e}")
            return Classification.POLLUTED

    def _forget(self, hostname: str, task: asyncio.Future):
        if self._inflight.get(hostname) is task:
            del self._inflight[hostname]

    async def _classify(self, hostname: str, depth: int = 0,
                        chain: Tuple[str, ...] = ()) -> Classification:
        state = self.cache.get(hostname)
        if state is not None:
            return state

        logger.debug(f"Checking {hostname}")
        query = DNSRecord.question(hostname, "A")

        for attempt in range(self.max_retries + 1):
            try:
                honeypot_answer, _ = await self.honeypot.exchange(query)
            except TransportError as e:
                logger.debug(f"Honeypot probe for {hostname} failed (attempt {attempt + 1}): {e}")
                continue

            if honeypot_answer.rr:
                logger.info(f"{hostname} polluted: honeypot answered")
                return self._commit(hostname, Classification.POLLUTED)

            try:
                local_answer, _ = await self.local.exchange(query)
            except TransportError as e:
                logger.debug(f"Local probe for {hostname} failed (attempt {attempt + 1}): {e}")
                continue

            if not local_answer.rr:
                logger.debug(f"Local resolver gave no answer for {hostname} (attempt {attempt + 1})")
                continue

            verdict = await self._check_cnames(hostname, local_answer, depth, chain)
            return self._commit(hostname, verdict)

        logger.warning(f"Detection for {hostname} gave up after {self.max_retries + 1} attempts, forcing secure path")
        return self._commit(hostname, Classification.POLLUTED)

    async def _check_cnames(self, hostname: str, answer: DNSRecord, depth: int,
                            chain: Tuple[str, ...]) -> Classification:
        chain = chain + (hostname,)
        for rr in answer.rr:
            if rr.rtype != QTYPE.CNAME:
                continue

            target = cname_target(rr)
            if target is None or target in chain:
                logger.debug(f"Skipping CNAME {rr.rdata!s} in chain of {hostname}")
                continue

            cached = self.cache.get(target)
            if cached is Classification.POLLUTED:
                logger.info(f"{hostname} polluted: CNAME {target} is polluted")
                return Classification.POLLUTED
            if cached is Classification.CLEAN:
                continue

            if depth + 1 > self.max_cname_depth:
                logger.warning(f"CNAME chain of {hostname} deeper than {self.max_cname_depth}, treating as polluted")
                return Classification.POLLUTED

            if await self._classify(target, depth + 1, chain) is Classification.POLLUTED:
                logger.info(f"{hostname} polluted: CNAME {target} is polluted")
                return Classification.POLLUTED
            self.cache.put(target, Classification.CLEAN)

        return Classification.CLEAN

    def _commit(self, hostname: str, state: Classification) -> Classification:
        self.cache.put(hostname, state)
        return state
