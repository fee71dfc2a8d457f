"""领域层业务异常定义，供领域、应用与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Optional
from shared.codes import BusinessCode

if TYPE_CHECKING:  # pragma: no cover
    from domain.broadcast.event import Event


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class InvalidInputException(BusinessException):
    """Publish rejected before any side effect (empty type, missing payload)."""

    def __init__(self, message: str, *, field: str | None = None, details: dict | None = None):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="InvalidInput",
            details=details,
            field=field,
        )


class TransportFailureException(BusinessException):
    """Fanout transport could not publish or subscribe."""

    def __init__(self, message: str = "Fanout transport unavailable", *, details: dict | None = None):
        super().__init__(
            code=BusinessCode.TRANSPORT_FAILURE,
            message=message,
            error_type="TransportFailure",
            details=details,
        )


class FanoutPublishException(TransportFailureException):
    """Local delivery succeeded but propagation to peer instances failed.

    The event has already been appended to history and delivered to local
    subscribers; it is attached so callers can still report it.
    """

    def __init__(self, event: "Event", *, reason: str) -> None:
        self.event = event
        super().__init__(
            message="Event delivered locally but fanout to peer instances failed",
            details={
                "event": event.to_wire(),
                "local_delivery": True,
                "reason": reason,
            },
        )


class SubscriberClosed(Exception):
    """Raised to a stream reader once its subscriber has been closed."""

    def __init__(self, subscriber_id: str, reason: Optional[str] = None) -> None:
        self.subscriber_id = subscriber_id
        self.reason = reason
        super().__init__(f"subscriber {subscriber_id} closed" + (f": {reason}" if reason else ""))
