"""Secure upstream manager with load balancing and health tracking."""
import time
from dataclasses import dataclass, field
from typing import List, Optional
from urllib.parse import urlparse
from .bootstrap import split_host_port, is_ip_address, resolve_hostname_to_ip
from .config import logger, BOOTSTRAP_DNS, FALLBACK_TLS_DNS

# Health bookkeeping
RESPONSE_WINDOW = 100
MIN_SAMPLES = 5
DOWN_THRESHOLD = 50.0


@dataclass
class UpstreamServer:
    """
    A trusted encrypted upstream with health metrics.

    ``host`` is the configured name used for SNI and the TLS session cache,
    ``ip`` is where connections actually go.
    """
    address: str
    scheme: str
    host: str
    ip: str
    port: int
    url: Optional[str] = None
    is_up: bool = True
    total_requests: int = 0
    failed_requests: int = 0
    response_times: List[float] = field(default_factory=list)
    last_check: float = field(default_factory=time.time)

    @property
    def is_pinned(self) -> bool:
        """True when connections go to a bootstrapped IP rather than the name."""
        return self.ip != self.host

    @property
    def avg_response_time(self) -> float:
        """Mean of the most recent response times, in seconds."""
        window = self.response_times[-RESPONSE_WINDOW:]
        return sum(window) / len(window) if window else 0.0

    @property
    def success_rate(self) -> float:
        """Calculate success rate as a percentage."""
        if self.total_requests == 0:
            return 100.0
        return ((self.total_requests - self.failed_requests) / self.total_requests) * 100

    def record_success(self, response_time: float):
        """Record a successful request."""
        self.total_requests += 1
        self.response_times.append(response_time)
        del self.response_times[:-RESPONSE_WINDOW]
        self.is_up = True
        self.last_check = time.time()

    def record_failure(self):
        """Record a failed request."""
        self.total_requests += 1
        self.failed_requests += 1
        self.last_check = time.time()

        if self.total_requests >= MIN_SAMPLES and self.success_rate < DOWN_THRESHOLD:
            self.is_up = False
            logger.warning(f"Upstream {self.address} marked as DOWN (success rate: {self.success_rate:.1f}%)")


def build_upstream(address: str, bootstrap_dns: str = BOOTSTRAP_DNS,
                   fallback: str = FALLBACK_TLS_DNS) -> UpstreamServer:
    """
    Turn a configured upstream into an UpstreamServer with a pinned IP.

    ``https://`` URLs are DNS over HTTPS, anything else is ``host:port`` for
    DNS over TLS. The hostname is resolved through the bootstrap resolver.
    A DoT upstream whose name cannot be resolved is pinned to ``fallback``
    and keeps its name for SNI; a DoH upstream that cannot be resolved is
    left to the system resolver.
    """
    if address.startswith('https://'):
        parsed = urlparse(address)
        host = parsed.hostname
        port = parsed.port or 443
        ip = resolve_hostname_to_ip(host, bootstrap_dns) or host
        return UpstreamServer(address=address, scheme='https', host=host, ip=ip, port=port, url=address)

    host, port = split_host_port(address, 853)
    if is_ip_address(host):
        return UpstreamServer(address=address, scheme='tls', host=host, ip=host, port=port)

    ip = resolve_hostname_to_ip(host, bootstrap_dns)
    if ip is None:
        ip, port = split_host_port(fallback, 853)
        logger.warning(f"Could not resolve secure upstream {host}, falling back to {ip}:{port}")
    else:
        logger.info(f"Secure upstream {host} pinned to {ip}:{port}")
    return UpstreamServer(address=address, scheme='tls', host=host, ip=ip, port=port)


class UpstreamManager:
    """Manages multiple secure upstream servers with load balancing."""

    def __init__(self, servers: List[UpstreamServer]):
        """
        Initialize the upstream manager.

        Args:
            servers: Upstream servers, usually from build_upstream
        """
        if not servers:
            raise ValueError("At least one secure upstream must be provided")

        self.servers = list(servers)
        self.current_index = 0
        logger.info(f"Initialized upstream manager with {len(self.servers)} servers: "
                    f"{[s.address for s in self.servers]}")

    @classmethod
    def from_addresses(cls, addresses: List[str], bootstrap_dns: str = BOOTSTRAP_DNS,
                       fallback: str = FALLBACK_TLS_DNS) -> "UpstreamManager":
        if not addresses:
            raise ValueError("At least one secure upstream must be provided")
        return cls([build_upstream(a, bootstrap_dns, fallback) for a in addresses])

    @property
    def has_https(self) -> bool:
        return any(s.scheme == 'https' for s in self.servers)

    async def get_next_server(self) -> Optional[UpstreamServer]:
        """
        Get the next available server using round-robin load balancing.
        Prioritizes servers that are up.

        Returns:
            UpstreamServer instance or None if no servers are configured
        """
        up_servers = [s for s in self.servers if s.is_up]

        if up_servers:
            server = up_servers[self.current_index % len(up_servers)]
            self.current_index = (self.current_index + 1) % len(up_servers)
            return server

        # All down: try to recover with the least bad one
        if self.servers:
            best_server = max(self.servers, key=lambda s: s.success_rate)
            logger.warning(f"All secure upstreams down, attempting recovery with {best_server.address}")
            return best_server

        return None

    def get_stats(self) -> List[dict]:
        """
        Get statistics for all upstream servers.

        Returns:
            List of dictionaries containing server statistics
        """
        stats = []
        for server in self.servers:
            stats.append({
                'address': server.address,
                'endpoint': f"{server.ip}:{server.port}",
                'is_up': server.is_up,
                'total_requests': server.total_requests,
                'failed_requests': server.failed_requests,
                'success_rate': f"{server.success_rate:.1f}%",
                'avg_response_time': f"{server.avg_response_time:.3f}s",
            })
        return stats

    def log_stats(self):
        """Log statistics for all upstream servers."""
        logger.info("=== Secure Upstream Statistics ===")
        for stat in self.get_stats():
            status = "UP" if stat['is_up'] else "DOWN"
            logger.info(
                f"[{status}] {stat['address']} ({stat['endpoint']}) - "
                f"Requests: {stat['total_requests']}, "
                f"Success Rate: {stat['success_rate']}, "
                f"Avg Response Time: {stat['avg_response_time']}"
            )
