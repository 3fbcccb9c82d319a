from __future__ import annotations

from contextvars import ContextVar
from dataclasses import dataclass, replace


@dataclass(frozen=True)
class RequestContext:
    request_id: str | None = None
    shop_id: str | None = None
    user_id: str | None = None


_EMPTY = RequestContext()
_CURRENT: ContextVar[RequestContext] = ContextVar("loyalty_request_context", default=_EMPTY)


def current_context() -> RequestContext:
    return _CURRENT.get()


def set_request_context(
    *, request_id: str | None = None, shop_id: str | None = None, user_id: str | None = None
) -> None:
    # None mantém o valor já gravado (auth grava user/shop depois do middleware)
    changes = {
        name: value
        for name, value in (("request_id", request_id), ("shop_id", shop_id), ("user_id", user_id))
        if value is not None
    }
    if changes:
        _CURRENT.set(replace(_CURRENT.get(), **changes))


def clear_request_context() -> None:
    _CURRENT.set(_EMPTY)
