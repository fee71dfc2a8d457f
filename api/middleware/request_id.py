"""
Request ID 中间件
生成或透传追踪ID，连同实例ID一起绑定到 structlog contextvars；
SSE 重连请求额外记录 Last-Event-ID，便于串联同一客户端的多次连接
"""
import uuid
from typing import Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

import structlog


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Request ID 追踪中间件

    - 从 X-Request-ID 获取或生成 request_id，写入 request.state 与响应头
    - 响应头 X-Instance-ID 标明处理该请求的实例（多实例部署时定位问题）
    - 事件流请求携带 Last-Event-ID（浏览器 EventSource 自动重连）时一并绑定
    """

    HEADER_NAME = "X-Request-ID"
    INSTANCE_HEADER = "X-Instance-ID"
    STREAM_PATHS = {"/events"}

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(self.HEADER_NAME) or str(uuid.uuid4())
        client_ip = self._get_client_ip(request)
        instance_id = self._instance_id(request)

        request.state.request_id = request_id
        request.state.client_ip = client_ip

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            client_ip=client_ip,
            method=request.method,
            path=request.url.path,
        )
        if instance_id:
            structlog.contextvars.bind_contextvars(instance_id=instance_id)
        if request.url.path in self.STREAM_PATHS:
            last_event_id = request.headers.get("Last-Event-ID")
            if last_event_id:
                structlog.contextvars.bind_contextvars(last_event_id=last_event_id)

        response = await call_next(request)
        response.headers[self.HEADER_NAME] = request_id
        if instance_id:
            response.headers[self.INSTANCE_HEADER] = instance_id
        return response

    @staticmethod
    def _instance_id(request: Request) -> Optional[str]:
        broadcaster = getattr(request.app.state, "broadcaster", None)
        return broadcaster.instance_id if broadcaster is not None else None

    @staticmethod
    def _get_client_ip(request: Request) -> str:
        """获取客户端真实IP（考虑代理）"""
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
        return request.headers.get("X-Real-IP") or (request.client.host if request.client else "unknown")
