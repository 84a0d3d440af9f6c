"""httpx transport that sends DoH requests to bootstrapped upstream addresses."""
import httpx
from typing import Iterable
from .upstream_manager import UpstreamServer


class PinnedHostTransport(httpx.AsyncHTTPTransport):
    """
    Connects to DoH upstreams at their bootstrapped IP.

    Each request for a pinned upstream is forwarded as a copy addressed to
    the IP, with the upstream name kept in the Host header and in SNI. The
    caller's request is never modified, so errors and logs show the name.

    Example:
        transport = PinnedHostTransport(upstream_manager.servers, http2=True)
        async with httpx.AsyncClient(transport=transport) as client:
            resp = await client.post("https://dns.google/dns-query", content=query)
    """

    def __init__(self, upstreams: Iterable[UpstreamServer] = (), **kwargs):
        super().__init__(**kwargs)
        self.upstreams = {s.host: s for s in upstreams if s.scheme == 'https' and s.is_pinned}

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        upstream = self.upstreams.get(request.url.host)
        if upstream is None:
            return await super().handle_async_request(request)

        pinned = httpx.Request(
            request.method,
            request.url.copy_with(host=upstream.ip),
            headers=request.headers,
            stream=request.stream,
            extensions={**request.extensions, 'sni_hostname': upstream.host},
        )
        response = await super().handle_async_request(pinned)
        response.request = request
        return response
