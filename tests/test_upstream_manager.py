"""Unit tests for the upstream manager module."""
import logging
import pytest
from unittest.mock import patch
from detox_dns.upstream_manager import UpstreamServer, UpstreamManager, build_upstream


def make_server(address="9.9.9.9:853", ip="9.9.9.9"):
    return UpstreamServer(address=address, scheme="tls", host=ip, ip=ip, port=853)


class TestUpstreamServer:
    """Tests for UpstreamServer class."""

    def test_server_initialization(self):
        """Test that a server is initialized with correct defaults."""
        server = make_server()

        assert server.is_up is True
        assert server.total_requests == 0
        assert server.failed_requests == 0
        assert server.avg_response_time == 0.0
        assert server.success_rate == 100.0

    def test_record_success(self):
        server = make_server()

        server.record_success(0.150)

        assert server.total_requests == 1
        assert server.response_times == [0.150]
        assert server.avg_response_time == pytest.approx(0.150)
        assert server.is_up is True

    def test_record_failure_keeps_server_up_at_first(self):
        server = make_server()

        server.record_failure()

        assert server.failed_requests == 1
        assert server.success_rate == 0.0
        assert server.is_up is True

    def test_server_marked_down_on_high_failure_rate(self):
        server = make_server()

        for _ in range(5):
            server.record_failure()

        assert server.is_up is False

    def test_server_recovery_after_success(self):
        server = make_server()
        for _ in range(5):
            server.record_failure()

        server.record_success(0.1)

        assert server.is_up is True

    def test_response_times_bounded(self):
        server = make_server()
        for i in range(150):
            server.record_success(0.001 * i)

        assert len(server.response_times) == 100


class TestUpstreamManager:
    """Tests for UpstreamManager class."""

    def test_requires_servers(self):
        with pytest.raises(ValueError):
            UpstreamManager([])
        with pytest.raises(ValueError):
            UpstreamManager.from_addresses([])

    @pytest.mark.asyncio
    async def test_round_robin(self):
        manager = UpstreamManager([make_server("9.9.9.9:853", "9.9.9.9"),
                                   make_server("1.1.1.1:853", "1.1.1.1")])

        addresses = [(await manager.get_next_server()).address for _ in range(4)]

        assert addresses == ["9.9.9.9:853", "1.1.1.1:853", "9.9.9.9:853", "1.1.1.1:853"]

    @pytest.mark.asyncio
    async def test_skips_down_servers(self):
        manager = UpstreamManager([make_server("9.9.9.9:853", "9.9.9.9"),
                                   make_server("1.1.1.1:853", "1.1.1.1")])
        manager.servers[0].is_up = False

        for _ in range(3):
            assert (await manager.get_next_server()).address == "1.1.1.1:853"

    @pytest.mark.asyncio
    async def test_all_down_returns_best(self):
        """Test that when all servers are down, the best one is returned."""
        manager = UpstreamManager([make_server("9.9.9.9:853", "9.9.9.9"),
                                   make_server("1.1.1.1:853", "1.1.1.1")])
        manager.servers[0].is_up = False
        manager.servers[0].total_requests = 10
        manager.servers[0].failed_requests = 8
        manager.servers[1].is_up = False
        manager.servers[1].total_requests = 10
        manager.servers[1].failed_requests = 5

        server = await manager.get_next_server()
        assert server.address == "1.1.1.1:853"

    def test_get_stats(self):
        manager = UpstreamManager([make_server()])
        manager.servers[0].record_success(0.150)
        manager.servers[0].record_failure()

        stats = manager.get_stats()

        assert stats[0]['address'] == "9.9.9.9:853"
        assert stats[0]['endpoint'] == "9.9.9.9:853"
        assert stats[0]['total_requests'] == 2
        assert stats[0]['success_rate'] == "50.0%"

    def test_log_stats(self, caplog):
        caplog.set_level(logging.INFO, logger='detox')
        manager = UpstreamManager([make_server()])

        manager.log_stats()

        assert any("Secure Upstream Statistics" in r.message for r in caplog.records)

    def test_has_https(self):
        manager = UpstreamManager([make_server()])
        assert manager.has_https is False


class TestBuildUpstream:
    """Tests for turning configured addresses into upstream servers."""

    def test_ip_address_is_used_directly(self):
        with patch('detox_dns.upstream_manager.resolve_hostname_to_ip') as mock_resolve:
            server = build_upstream("1.1.1.1:853")

        mock_resolve.assert_not_called()
        assert server.scheme == "tls"
        assert server.ip == "1.1.1.1"
        assert server.port == 853

    def test_hostname_is_pinned(self):
        with patch('detox_dns.upstream_manager.resolve_hostname_to_ip', return_value="9.9.9.9"):
            server = build_upstream("dns.quad9.net:853", bootstrap_dns="119.29.29.29")

        assert server.host == "dns.quad9.net"
        assert server.ip == "9.9.9.9"
        assert server.port == 853

    def test_default_port(self):
        with patch('detox_dns.upstream_manager.resolve_hostname_to_ip', return_value="9.9.9.9"):
            server = build_upstream("dns.quad9.net")
        assert server.port == 853

    def test_unresolvable_dot_falls_back(self):
        with patch('detox_dns.upstream_manager.resolve_hostname_to_ip', return_value=None):
            server = build_upstream("q9dns.invalid:853", fallback="9.9.9.9:853")

        assert server.host == "q9dns.invalid"
        assert server.ip == "9.9.9.9"
        assert server.port == 853

    def test_https_upstream(self):
        with patch('detox_dns.upstream_manager.resolve_hostname_to_ip', return_value="8.8.8.8"):
            server = build_upstream("https://dns.google/dns-query")

        assert server.scheme == "https"
        assert server.host == "dns.google"
        assert server.ip == "8.8.8.8"
        assert server.port == 443
        assert server.url == "https://dns.google/dns-query"

    def test_unresolvable_https_keeps_hostname(self):
        with patch('detox_dns.upstream_manager.resolve_hostname_to_ip', return_value=None):
            server = build_upstream("https://dns.google/dns-query")
        assert server.ip == "dns.google"
