"""
promptp2p/metrics.py

Prometheus metrics for promptp2p workers.

Two metrics per worker, labelled with worker=<name>:
- requests_total{method,status}           counter
- request_duration_seconds{method}        histogram

MetricsServer exposes them on GET /metrics over a minimal trio HTTP
server.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import trio

from .config import DEFAULT_METRICS_PORT

logger = logging.getLogger("promptp2p.metrics")

PROMETHEUS_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


class GatewayMetrics:
    """
    Request counter and latency histogram for one worker.

    Recording never raises: a failure while recording is logged and
    dropped so the request path is unaffected.

    Usage:
        metrics = GatewayMetrics("gateway")
        metrics.track_request("login", "success", 0.12)
        prometheus_output = metrics.collect()
    """

    METRICS = {
        "requests_total": {
            "type": "counter",
            "help": "Total number of requests",
        },
        "request_duration_seconds": {
            "type": "histogram",
            "help": "Request duration in seconds",
        },
    }

    BUCKETS = [0.1, 0.5, 1, 2, 5]

    def __init__(self, worker_name: str, port: int = DEFAULT_METRICS_PORT):
        """
        Args:
            worker_name: Value of the worker label on every series
            port: Port the metrics server should listen on
        """
        self.worker_name = worker_name
        self.port = port
        self._start_time = time.time()

        # (method, status) -> count
        self._request_counts: Dict[Tuple[str, str], int] = {}

        # method -> per-bucket counts (non-cumulative, +Inf last), sum, count
        self._duration_buckets: Dict[str, List[int]] = {}
        self._duration_sum: Dict[str, float] = {}
        self._duration_count: Dict[str, int] = {}

    def track_request(self, method: str, status: str, duration: float) -> None:
        """Record one finished request."""
        try:
            key = (method, status)
            self._request_counts[key] = self._request_counts.get(key, 0) + 1

            buckets = self._duration_buckets.setdefault(method, [0] * (len(self.BUCKETS) + 1))
            for i, bound in enumerate(self.BUCKETS):
                if duration <= bound:
                    buckets[i] += 1
                    break
            else:
                buckets[-1] += 1

            self._duration_sum[method] = self._duration_sum.get(method, 0.0) + float(duration)
            self._duration_count[method] = self._duration_count.get(method, 0) + 1
        except Exception as e:
            logger.error(f"[METRICS] Error recording metrics: {e}")

    def _labels(self, **labels: str) -> str:
        labels = {"worker": self.worker_name, **labels}
        return ",".join(f'{k}="{v}"' for k, v in labels.items())

    def collect(self) -> str:
        """
        Render all metrics in Prometheus text format.

        Returns:
            Prometheus-formatted metrics string
        """
        lines = []

        def add_header(name: str):
            metric_def = self.METRICS[name]
            lines.append(f"# HELP {name} {metric_def['help']}")
            lines.append(f"# TYPE {name} {metric_def['type']}")

        try:
            add_header("requests_total")
            for (method, status), count in sorted(self._request_counts.items()):
                lines.append(f"requests_total{{{self._labels(method=method, status=status)}}} {count}")

            add_header("request_duration_seconds")
            for method in sorted(self._duration_buckets):
                buckets = self._duration_buckets[method]
                cumulative = 0
                for bound, count in zip(self.BUCKETS, buckets):
                    cumulative += count
                    labels = self._labels(method=method, le=str(bound))
                    lines.append(f"request_duration_seconds_bucket{{{labels}}} {cumulative}")
                cumulative += buckets[-1]
                labels = self._labels(method=method, le="+Inf")
                lines.append(f"request_duration_seconds_bucket{{{labels}}} {cumulative}")
                labels = self._labels(method=method)
                lines.append(f"request_duration_seconds_sum{{{labels}}} {self._duration_sum[method]}")
                lines.append(f"request_duration_seconds_count{{{labels}}} {self._duration_count[method]}")

        except Exception as e:
            logger.error(f"Error collecting metrics: {e}")
            lines.append(f"# Error collecting metrics: {e}")

        return "\n".join(lines) + "\n"

    def get_stats(self) -> Dict[str, Any]:
        """Metric values as a dictionary (for logs and tests)."""
        requests: Dict[str, Dict[str, int]] = {}
        for (method, status), count in self._request_counts.items():
            requests.setdefault(method, {})[status] = count

        return {
            "worker": self.worker_name,
            "requests": requests,
            "total_requests": sum(self._request_counts.values()),
            "uptime_seconds": time.time() - self._start_time,
        }

    def reset_counters(self) -> None:
        self._request_counts.clear()
        self._duration_buckets.clear()
        self._duration_sum.clear()
        self._duration_count.clear()


@dataclass
class Response:
    """HTTP response representation."""
    status: int
    headers: Dict[str, str]
    body: bytes

    @classmethod
    def text(cls, text: str, status: int = 200, content_type: str = "text/plain") -> "Response":
        return cls(
            status=status,
            headers={"Content-Type": content_type},
            body=text.encode("utf-8"),
        )


class MetricsServer:
    """
    Serves GET /metrics for a GatewayMetrics instance.

    Usage:
        server = MetricsServer(metrics, host="0.0.0.0", port=9100)
        nursery.start_soon(server.run)
        ...
        await server.stop()
    """

    STATUS_TEXT = {
        200: "OK",
        404: "Not Found",
        405: "Method Not Allowed",
        500: "Internal Server Error",
    }

    def __init__(self, metrics: GatewayMetrics, host: str = "127.0.0.1", port: Optional[int] = None):
        self.metrics = metrics
        self.host = host
        self.port = metrics.port if port is None else port

        self._running = False
        self._cancel_scope: Optional[trio.CancelScope] = None

    @property
    def running(self) -> bool:
        return self._running

    async def run(self, task_status=trio.TASK_STATUS_IGNORED) -> None:
        """Serve until stop() is called or the enclosing nursery is cancelled."""
        if self._running:
            logger.warning("Metrics server already running")
            task_status.started()
            return

        self._running = True
        self._cancel_scope = trio.CancelScope()
        logger.info(
            f"Metrics server started: http://{self.host}:{self.port}/metrics "
            f"worker={self.metrics.worker_name}"
        )

        try:
            with self._cancel_scope:
                await trio.serve_tcp(
                    self._handle_connection,
                    self.port,
                    host=self.host,
                    task_status=task_status,
                )
        except OSError as e:
            logger.error(f"Metrics server error: {e}")
            raise
        finally:
            self._running = False

    async def stop(self) -> None:
        if self._cancel_scope:
            self._cancel_scope.cancel()
            self._cancel_scope = None
        self._running = False
        logger.info("Metrics server stopped")

    async def _handle_connection(self, stream: trio.SocketStream) -> None:
        try:
            request_line = await self._read_request_line(stream)
            if request_line is None:
                return
            response = self._route(request_line)
            await self._send_response(stream, response)
        except Exception as e:
            logger.error(f"Metrics connection error: {e}")
        finally:
            await stream.aclose()

    async def _read_request_line(self, stream: trio.SocketStream) -> Optional[Tuple[str, str]]:
        """Read request headers and return (method, path)."""
        data = b""
        while b"\r\n\r\n" not in data:
            chunk = await stream.receive_some(4096)
            if not chunk:
                return None
            data += chunk
            if len(data) > 64 * 1024:
                return None

        request_line = data.split(b"\r\n", 1)[0].decode("utf-8", errors="replace").split(" ")
        method = request_line[0]
        path = request_line[1].split("?", 1)[0] if len(request_line) > 1 else "/"
        return method, path

    def _route(self, request_line: Tuple[str, str]) -> Response:
        method, path = request_line
        if path != "/metrics":
            return Response.text("Not Found", status=404)
        if method != "GET":
            return Response.text("Method Not Allowed", status=405)
        return Response.text(self.metrics.collect(), content_type=PROMETHEUS_CONTENT_TYPE)

    async def _send_response(self, stream: trio.SocketStream, response: Response) -> None:
        status_text = self.STATUS_TEXT.get(response.status, "Unknown")
        lines = [f"HTTP/1.1 {response.status} {status_text}"]

        response.headers["Content-Length"] = str(len(response.body))
        response.headers["Connection"] = "close"

        for key, value in response.headers.items():
            lines.append(f"{key}: {value}")

        lines.append("")
        header_bytes = "\r\n".join(lines).encode("utf-8") + b"\r\n"
        await stream.send_all(header_bytes + response.body)
