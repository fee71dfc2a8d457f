"""
配置文件 - 项目配置管理
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional


class RedisSettings(BaseModel):
    url: Optional[str] = None
    max_connections: int = 10
    namespace: str = "sse-broadcast"


class BroadcastSettings(BaseModel):
    # Fanout channel shared by every instance of the service
    channel: str = "sse-events"
    history_capacity: int = Field(default=100, ge=1)
    history_default_limit: int = Field(default=10, ge=1)
    # Per-subscriber outbound queue and what to do when it is full
    send_queue_max: int = Field(default=100, ge=1)
    overflow_policy: str = Field(default="disconnect", description="disconnect | drop_oldest | drop_new")
    heartbeat_interval_s: float = 15.0
    # Periodic "update" event; 0 disables
    ticker_interval_s: float = 10.0
    announce_startup: bool = True
    instance_prefix: Optional[str] = None
    reconnect_initial_backoff_s: float = 0.5
    reconnect_max_backoff_s: float = 30.0

    @model_validator(mode="after")
    def _clamp_default_limit(self):
        if self.history_default_limit > self.history_capacity:
            self.history_default_limit = self.history_capacity
        return self


class Settings(BaseSettings):
    """项目配置"""

    # 基础配置
    PROJECT_NAME: str = Field(default="SSE Broadcast Service")
    VERSION: str = Field(default="1.0.0")
    DEBUG: bool = Field(default=True)
    ENVIRONMENT: str = Field(default="development")
    # 缺省时 DEBUG -> debug, 否则 info
    LOG_LEVEL: Optional[str] = Field(default=None)

    # 分组配置：Redis/Broadcast 采用嵌套模型（环境变量 REDIS__URL、BROADCAST__CHANNEL 等）
    redis: RedisSettings = Field(default_factory=RedisSettings)
    broadcast: BroadcastSettings = Field(default_factory=BroadcastSettings)

    # Fanout broker: auto | redis | inmemory (auto -> redis if REDIS__URL else inmemory)
    REALTIME_BROKER: str = Field(default="auto")

    # CORS配置
    CORS_ORIGINS: list = Field(default=["*"])

    # pydantic-settings v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _parse_cors_origins(cls, v):
        """允许 JSON 字符串或逗号分隔字符串两种格式。"""
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            s = v.strip()
            if s.startswith("[") and s.endswith("]"):
                import json
                try:
                    arr = json.loads(s)
                    if isinstance(arr, list):
                        return arr
                except Exception:
                    pass
            if "," in s:
                return [item.strip() for item in s.split(",") if item.strip()]
            return [s]
        return v


settings = Settings()
