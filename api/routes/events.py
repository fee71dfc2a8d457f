"""
事件广播路由 - SSE 订阅、发布、历史与统计

- GET  /events   SSE stream: connected -> history -> live events
- POST /send     publish an event to every instance
- GET  /history  recent events, oldest first
- GET  /stats    instance id and subscriber count
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from api.dependencies import get_broadcaster
from api.utils.sse import HEARTBEAT, SSE_HEADERS, encode_frame
from application.dto import EventDTO, HistoryDTO, PublishResultDTO, SendEventDTO, StatsDTO
from application.services.broadcast_service import Broadcaster
from core.config import settings
from core.logging_config import get_logger
from core.response import success_response, Response as ApiResponse


logger = get_logger(__name__)

router = APIRouter(tags=["Events"])


@router.get("/events", summary="订阅事件流（Server-Sent Events）")
async def stream_events(
    request: Request,
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    """
    打开一个 SSE 长连接

    依次收到：`connected` 通知、`history` 快照（最近若干条），之后是实时事件。
    空闲时发送 `: heartbeat` 注释行。

    curl -N http://localhost:8000/events
    """
    subscriber = await broadcaster.new_connection()
    heartbeat = settings.broadcast.heartbeat_interval_s

    async def event_stream():
        try:
            async for frame in subscriber.frames(heartbeat):
                if frame is None:
                    if await request.is_disconnected():
                        break
                    yield HEARTBEAT
                    continue
                yield encode_frame(frame)
        finally:
            # Runs on client disconnect, cancellation, overflow eviction and shutdown
            await broadcaster.disconnect(subscriber.id)
            logger.info("sse_stream_closed", subscriber_id=subscriber.id, reason=subscriber.close_reason)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
        # covers the case where the body iterator never starts
        background=BackgroundTask(broadcaster.disconnect, subscriber.id),
    )


@router.post("/send", summary="发布事件", response_model=ApiResponse[PublishResultDTO])
async def send_event(
    body: SendEventDTO,
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    """
    发布事件到所有实例

    - **event**: 事件类型，默认 `message`
    - **data**: 事件负载（必填）

    若跨实例传播失败，本地订阅者仍已收到事件，接口返回 503 并在错误详情中附带该事件。
    """
    event = await broadcaster.publish(body.event, body.data)
    result = PublishResultDTO(
        event=EventDTO.model_validate(event.model_dump()),
        client_count=broadcaster.subscriber_count,
        instance_id=broadcaster.instance_id,
    )
    return success_response(data=result, message="Event published")


@router.get("/history", summary="获取历史事件", response_model=ApiResponse[HistoryDTO])
async def get_history(
    limit: Optional[int] = Query(None, description="返回条数；缺省或 <= 0 使用默认值，超过容量按容量截断"),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    """最近的事件，按写入顺序（旧 -> 新）"""
    events = broadcaster.history(limit)
    items = [EventDTO.model_validate(e.model_dump()) for e in events]
    return success_response(data=HistoryDTO(items=items, count=len(items)))


@router.get("/stats", summary="实例统计", response_model=ApiResponse[StatsDTO])
async def get_stats(
    request: Request,
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    buffer = broadcaster.history_buffer
    stats = StatsDTO(
        instance_id=broadcaster.instance_id,
        subscriber_count=broadcaster.subscriber_count,
        evicted_subscribers=broadcaster.registry.evicted,
        history_size=len(buffer),
        history_capacity=buffer.capacity,
        broker=getattr(request.app.state, "fanout_provider", None),
    )
    return success_response(data=stats)
