from __future__ import annotations

from dataclasses import dataclass
from threading import Lock

UNMATCHED_ENDPOINT = "<unmatched>"


@dataclass
class EndpointMetric:
    total_requests: int = 0
    total_duration_ms: float = 0.0
    error_count: int = 0

    def add(self, status_code: int, duration_ms: float) -> None:
        self.total_requests += 1
        self.total_duration_ms += duration_ms
        if status_code >= 400:
            self.error_count += 1

    @property
    def avg_duration_ms(self) -> float:
        return self.total_duration_ms / self.total_requests if self.total_requests else 0.0

    def as_dict(self) -> dict[str, float | int]:
        return {
            "total_requests": self.total_requests,
            "total_duration_ms": round(self.total_duration_ms, 2),
            "avg_duration_ms": round(self.avg_duration_ms, 2),
            "error_count": self.error_count,
        }


class InMemoryRequestMetrics:
    """Contadores por template de rota (ex.: ``GET /redemptions/{code}``), nunca pelo path cru."""

    def __init__(self) -> None:
        self._metrics: dict[tuple[str, str], EndpointMetric] = {}
        self._shop_metrics: dict[str, EndpointMetric] = {}
        self._shop_endpoints: dict[str, dict[tuple[str, str], EndpointMetric]] = {}
        self._lock = Lock()

    def observe(
        self,
        endpoint: str,
        method: str,
        status_code: int,
        duration_ms: float,
        shop_id: str | None = None,
    ) -> None:
        key = (endpoint, method)
        with self._lock:
            self._metrics.setdefault(key, EndpointMetric()).add(status_code, duration_ms)
            if shop_id:
                self._shop_metrics.setdefault(shop_id, EndpointMetric()).add(status_code, duration_ms)
                shop_endpoints = self._shop_endpoints.setdefault(shop_id, {})
                shop_endpoints.setdefault(key, EndpointMetric()).add(status_code, duration_ms)

    def snapshot(self) -> dict[str, dict[str, float | int]]:
        with self._lock:
            return {f"{method} {endpoint}": metric.as_dict() for (endpoint, method), metric in self._metrics.items()}

    def snapshot_for_shop(self, shop_id: str) -> dict[str, float | int]:
        with self._lock:
            metric = self._shop_metrics.get(shop_id, EndpointMetric())
            return {
                "requests": metric.total_requests,
                "errors": metric.error_count,
                "avg_duration_ms": round(metric.avg_duration_ms, 2),
            }

    def endpoints_for_shop(self, shop_id: str) -> dict[str, dict[str, float | int]]:
        with self._lock:
            return {
                f"{method} {endpoint}": metric.as_dict()
                for (endpoint, method), metric in self._shop_endpoints.get(shop_id, {}).items()
            }

    def reset(self) -> None:
        with self._lock:
            self._metrics.clear()
            self._shop_metrics.clear()
            self._shop_endpoints.clear()


request_metrics = InMemoryRequestMetrics()
