"""
promptp2p/tests/test_metrics.py

Unit tests for gateway Prometheus metrics and the metrics HTTP server.
"""

import pytest
from unittest.mock import Mock, AsyncMock


@pytest.fixture
def metrics():
    from promptp2p.metrics import GatewayMetrics
    return GatewayMetrics("gateway")


class TestGatewayMetrics:
    """Tests for GatewayMetrics."""

    def test_init(self, metrics):
        """Test metrics initialization."""
        assert metrics.worker_name == "gateway"
        assert metrics.port == 9100
        assert metrics.get_stats()["total_requests"] == 0

    def test_track_request(self, metrics):
        """Test counters per method and status."""
        metrics.track_request("login", "success", 0.2)
        metrics.track_request("login", "success", 0.3)
        metrics.track_request("login", "error", 1.5)

        stats = metrics.get_stats()

        assert stats["requests"] == {"login": {"success": 2, "error": 1}}
        assert stats["total_requests"] == 3

    def test_track_request_never_raises(self, metrics):
        """Test bad input is logged and dropped."""
        metrics.track_request("login", "success", "not-a-number")
        metrics.track_request("login", "success", None)

    def test_collect_prometheus_format(self, metrics):
        """Test Prometheus text exposition output."""
        metrics.track_request("processPrompt", "success", 0.05)
        metrics.track_request("processPrompt", "error", 3)

        output = metrics.collect()

        assert "# HELP requests_total Total number of requests" in output
        assert "# TYPE requests_total counter" in output
        assert "# TYPE request_duration_seconds histogram" in output
        assert 'requests_total{worker="gateway",method="processPrompt",status="success"} 1' in output
        assert 'requests_total{worker="gateway",method="processPrompt",status="error"} 1' in output
        assert 'request_duration_seconds_bucket{worker="gateway",method="processPrompt",le="0.1"} 1' in output
        assert 'request_duration_seconds_bucket{worker="gateway",method="processPrompt",le="2"} 1' in output
        assert 'request_duration_seconds_bucket{worker="gateway",method="processPrompt",le="5"} 2' in output
        assert 'request_duration_seconds_bucket{worker="gateway",method="processPrompt",le="+Inf"} 2' in output
        assert 'request_duration_seconds_count{worker="gateway",method="processPrompt"} 2' in output
        assert output.endswith("\n")

    def test_collect_overflow_bucket(self, metrics):
        """Test durations beyond the last bucket only count in +Inf."""
        metrics.track_request("login", "success", 10)

        output = metrics.collect()

        assert 'request_duration_seconds_bucket{worker="gateway",method="login",le="5"} 0' in output
        assert 'request_duration_seconds_bucket{worker="gateway",method="login",le="+Inf"} 1' in output

    def test_collect_empty(self, metrics):
        """Test headers are emitted before any request."""
        output = metrics.collect()

        assert "# TYPE requests_total counter" in output
        assert "requests_total{" not in output

    def test_reset_counters(self, metrics):
        """Test resetting counters."""
        metrics.track_request("login", "success", 0.1)
        metrics.reset_counters()

        assert metrics.get_stats()["requests"] == {}


class TestMetricsServer:
    """Tests for MetricsServer routing."""

    def test_route_metrics(self, metrics):
        """Test GET /metrics returns Prometheus text."""
        from promptp2p.metrics import MetricsServer, PROMETHEUS_CONTENT_TYPE

        metrics.track_request("ping", "success", 0.01)
        server = MetricsServer(metrics)

        response = server._route(("GET", "/metrics"))

        assert response.status == 200
        assert response.headers["Content-Type"] == PROMETHEUS_CONTENT_TYPE
        assert b'requests_total{worker="gateway",method="ping",status="success"} 1' in response.body

    def test_route_not_found(self, metrics):
        from promptp2p.metrics import MetricsServer

        assert MetricsServer(metrics)._route(("GET", "/health")).status == 404

    def test_route_method_not_allowed(self, metrics):
        from promptp2p.metrics import MetricsServer

        assert MetricsServer(metrics)._route(("POST", "/metrics")).status == 405

    def test_port_defaults_to_metrics_port(self):
        from promptp2p.metrics import GatewayMetrics, MetricsServer

        server = MetricsServer(GatewayMetrics("gateway", port=9200))

        assert server.port == 9200
        assert server.running is False

    @pytest.mark.trio
    async def test_read_request_line(self, metrics):
        """Test request line parsing from a stream."""
        from promptp2p.metrics import MetricsServer

        stream = Mock()
        stream.receive_some = AsyncMock(
            side_effect=[b"GET /metrics?x=1 HTTP/1.1\r\n", b"Host: localhost\r\n\r\n"]
        )

        request_line = await MetricsServer(metrics)._read_request_line(stream)

        assert request_line == ("GET", "/metrics")

    @pytest.mark.trio
    async def test_read_request_line_closed(self, metrics):
        """Test a connection closed before headers end."""
        from promptp2p.metrics import MetricsServer

        stream = Mock()
        stream.receive_some = AsyncMock(return_value=b"")

        assert await MetricsServer(metrics)._read_request_line(stream) is None

    @pytest.mark.trio
    async def test_send_response(self, metrics):
        """Test status line and headers are written."""
        from promptp2p.metrics import MetricsServer, Response

        stream = Mock()
        stream.send_all = AsyncMock()

        await MetricsServer(metrics)._send_response(stream, Response.text("hello"))

        sent = stream.send_all.await_args.args[0]
        assert sent.startswith(b"HTTP/1.1 200 OK\r\n")
        assert b"Content-Length: 5\r\n" in sent
        assert sent.endswith(b"\r\n\r\nhello")
