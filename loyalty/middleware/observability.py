from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from loyalty.core.metrics import UNMATCHED_ENDPOINT, request_metrics
from loyalty.core.request_context import clear_request_context, set_request_context

logger = logging.getLogger(__name__)


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        set_request_context(request_id=request_id)

        status_code = 500
        method = request.method
        response = None

        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            endpoint = _route_template(request)
            shop_id = _extract_shop_id(request)
            error_code = getattr(request.state, "error_code", None)
            user_id = _extract_user_id(request)
            duration_ms = round((time.perf_counter() - start) * 1000, 2)

            set_request_context(shop_id=shop_id, user_id=user_id)
            request_metrics.observe(
                endpoint=endpoint,
                method=method,
                status_code=status_code,
                duration_ms=duration_ms,
                shop_id=shop_id,
            )

            logger.log(
                logging.WARNING if status_code >= 500 else logging.INFO,
                "request completed",
                extra={
                    "request_id": request_id,
                    "shop_id": shop_id,
                    "user_id": user_id,
                    "endpoint": endpoint,
                    "method": method,
                    "status_code": status_code,
                    "error_code": error_code,
                    "duration_ms": duration_ms,
                },
            )

            if response is not None:
                response.headers["X-Request-ID"] = request_id

            clear_request_context()


def _extract_shop_id(request: Request) -> str | None:
    # só a loja resolvida pela rota (recurso ou token); header do cliente não conta
    shop_id = getattr(request.state, "shop_id", None)
    return str(shop_id) if shop_id is not None else None


def _extract_user_id(request: Request) -> str | None:
    user = getattr(request.state, "user", None)
    if user is None:
        return None
    user_id = getattr(user, "id", None)
    return str(user_id) if user_id is not None else None


def _route_template(request: Request) -> str:
    # o FastAPI grava a rota casada no scope; paths sem rota viram um só balde
    route = request.scope.get("route")
    path = getattr(route, "path", None)
    return path or UNMATCHED_ENDPOINT
