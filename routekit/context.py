"""Per-request state handed to handlers and dependency factories."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from .background import BackgroundTasks
from .http import Request

if TYPE_CHECKING:
    from .route import Route


@dataclass
class RequestContext:
    """Validated inputs, resolved dependencies and the background hook.

    ``params``, ``query`` and ``body`` hold the parsed values produced by the
    route's schemas, or the raw input when the route declares no schema.
    """

    request: Request
    route: Route | None = None
    params: Any = None
    query: Any = None
    body: Any = None
    dependencies: dict[str, Any] = field(default_factory=dict)
    background: BackgroundTasks = field(default_factory=BackgroundTasks)
    request_id: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def method(self) -> str:
        return self.request.method

    @property
    def path(self) -> str:
        return self.request.path

    @property
    def headers(self) -> dict[str, str]:
        return self.request.headers

    @property
    def cookies(self) -> dict[str, str]:
        return self.request.cookies


__all__ = ["RequestContext"]
