"""
数据传输对象（DTO）- 应用层与表现层之间的数据传输
"""
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class DTOBase(BaseModel):
    """Base DTO: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SendEventDTO(DTOBase):
    """Producer publish request"""
    event: str = Field(default="message", description="事件类型（SSE event 名称）")
    data: Any = Field(default=None, description="事件负载，任意 JSON 值")


class EventDTO(DTOBase):
    event_id: str
    event_type: str
    payload: Any
    timestamp: int
    origin_instance_id: str


class PublishResultDTO(DTOBase):
    event: EventDTO
    client_count: int
    instance_id: str


class HistoryDTO(DTOBase):
    items: List[EventDTO]
    count: int


class StatsDTO(DTOBase):
    instance_id: str
    subscriber_count: int
    evicted_subscribers: int
    history_size: int
    history_capacity: int
    broker: Optional[str] = None
