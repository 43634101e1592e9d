"""
Correlation and warnings for a single scheduling request.

A RequestContext is created per request and passed explicitly to every
component that logs or records warnings. Binding a correlation id returns a
new context; the warnings list is shared between a context and the contexts
derived from it, so everything recorded during one request ends up in one
place.
"""
from __future__ import annotations

import uuid
import structlog
from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class RequestContext:
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    correlation_id: Optional[str] = None
    warnings: list[str] = field(default_factory=list)
    log: Any = None

    def __post_init__(self):
        if self.log is None:
            self.log = structlog.get_logger().bind(
                request_id=self.request_id,
                correlation_id=self.correlation_id,
            )

    def with_correlation(self, correlation_id: str) -> RequestContext:
        return RequestContext(
            request_id=self.request_id,
            correlation_id=correlation_id,
            warnings=self.warnings,
            log=self.log.bind(correlation_id=correlation_id),
        )

    def warn(self, event: str, **fields: Any) -> None:
        """Record a non-fatal warning and log it."""
        self.warnings.append(event)
        self.log.warning(event, **fields)


def ensure_context(ctx: Optional[RequestContext]) -> RequestContext:
    return ctx if ctx is not None else RequestContext()
