"""Bootstrap DNS resolution logic."""
import ipaddress
import socket
from typing import Optional, Tuple
from dnslib import DNSRecord, QTYPE
from .config import logger, BOOTSTRAP_DNS


def split_host_port(address: str, default_port: int) -> Tuple[str, int]:
    """
    Split an ``host:port`` address.

    Accepts bare hosts, ``host:port``, bare IPv6 addresses and ``[v6]:port``.
    """
    address = address.strip()
    if address.startswith('['):
        host, _, rest = address[1:].partition(']')
        port = rest[1:] if rest.startswith(':') else ''
        return host, int(port) if port else default_port
    if address.count(':') == 1:
        host, port = address.split(':')
        return host, int(port) if port else default_port
    return address, default_port


def is_ip_address(host: str) -> bool:
    """Check whether ``host`` is a literal IPv4 or IPv6 address."""
    try:
        ipaddress.ip_address(host)
        return True
    except ValueError:
        return False


def resolve_hostname_to_ip(hostname: str, bootstrap_dns: str = BOOTSTRAP_DNS) -> Optional[str]:
    """
    Resolves a hostname to an IP address using the bootstrap DNS server.

    The lookup is a single raw UDP A query, so it works before the event
    loop exists and does not depend on the system resolver.

    Args:
        hostname: The hostname to resolve (e.g., 'dns.quad9.net')
        bootstrap_dns: The DNS server to use for resolution, ``ip`` or ``ip:port``

    Returns:
        The resolved IP address as a string, or None if resolution failed
    """
    if is_ip_address(hostname):
        return hostname

    server, port = split_host_port(bootstrap_dns, 53)
    logger.debug(f"Resolving '{hostname}' via {server}:{port}...")

    q = DNSRecord.question(hostname, "A")
    data = q.pack()

    try:
        family = socket.AF_INET6 if ':' in server else socket.AF_INET
        with socket.socket(family, socket.SOCK_DGRAM) as sock:
            sock.settimeout(5.0)
            sock.sendto(data, (server, port))
            response_data, _ = sock.recvfrom(4096)

            response = DNSRecord.parse(response_data)
            for rr in response.rr:
                if rr.rtype == QTYPE.A:
                    ip = str(rr.rdata)
                    logger.debug(f"Resolved {hostname} -> {ip}")
                    return ip

            logger.warning(f"Could not resolve {hostname} via bootstrap.")
            return None

    except Exception as e:
        logger.error(f"Bootstrap resolution failed for {hostname}: {e}")
        return None
