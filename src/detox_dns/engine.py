"""One-time construction of the resolver components."""
from typing import Optional
import httpx
from . import config
from .cache import DetectCache
from .clients import PlainClient
from .config import logger
from .detective import Detective
from .global_metrics import GlobalMetrics
from .persistence import load_cache
from .resolver import SecureClient
from .router import QueryRouter
from .transport import PinnedHostTransport
from .upstream_manager import UpstreamManager


class Engine:
    """
    Owns the cache, the resolver clients, the detective and the router.

    Built once at process start and passed to the server loop and the cache
    supervisor.
    """

    def __init__(
        self,
        cache: DetectCache,
        honeypot: PlainClient,
        local: PlainClient,
        secure: SecureClient,
        metrics: Optional[GlobalMetrics] = None,
        cache_file: str = config.CACHE_FILE,
        max_retries: int = config.DETECT_RETRIES,
        max_cname_depth: int = config.MAX_CNAME_DEPTH,
        fallback_to_secure: bool = config.FALLBACK_TO_SECURE,
    ):
        self.cache = cache
        self.honeypot = honeypot
        self.local = local
        self.secure = secure
        self.metrics = metrics or GlobalMetrics()
        self.cache_file = cache_file
        self.detective = Detective(cache, honeypot, local,
                                   max_retries=max_retries, max_cname_depth=max_cname_depth)
        self.router = QueryRouter(self.detective, local, secure, self.metrics,
                                  fallback_to_secure=fallback_to_secure)

    @classmethod
    def from_config(cls) -> "Engine":
        """Build an Engine from the environment configuration."""
        logger.info(f"TLS_DNS {config.TLS_DNS}")
        logger.info(f"LOCAL_DNS {config.LOCAL_DNS}")
        logger.info(f"HONEYPOT_DNS {config.HONEYPOT_DNS}")

        cache = DetectCache(capacity=config.CACHE_CAPACITY, ttl=config.CACHE_TTL)
        restored = cache.restore(load_cache(config.CACHE_FILE))
        if restored:
            logger.info(f"Restored {restored} detection results from {config.CACHE_FILE}")

        upstream_manager = UpstreamManager.from_addresses(
            config.TLS_DNS, bootstrap_dns=config.BOOTSTRAP_DNS, fallback=config.FALLBACK_TLS_DNS
        )

        http_client = None
        if upstream_manager.has_https:
            transport = PinnedHostTransport(
                upstream_manager.servers,
                verify=config.TLS_VERIFY,
                http2=True,
                limits=httpx.Limits(max_keepalive_connections=20,
                                    max_connections=config.WORKER_COUNT + 5),
            )
            http_client = httpx.AsyncClient(transport=transport)

        secure = SecureClient(
            upstream_manager,
            timeout=config.DIAL_TIMEOUT,
            verify=config.TLS_VERIFY,
            session_cache_size=config.TLS_SESSION_CACHE_SIZE,
            http_client=http_client,
        )

        return cls(
            cache=cache,
            honeypot=PlainClient(config.HONEYPOT_DNS, name="honeypot", timeout=config.QUERY_TIMEOUT),
            local=PlainClient(config.LOCAL_DNS, name="local", timeout=config.QUERY_TIMEOUT),
            secure=secure,
            cache_file=config.CACHE_FILE,
            max_retries=config.DETECT_RETRIES,
            max_cname_depth=config.MAX_CNAME_DEPTH,
            fallback_to_secure=config.FALLBACK_TO_SECURE,
        )

    async def aclose(self):
        await self.secure.aclose()
