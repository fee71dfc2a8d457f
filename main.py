"""
FastAPI应用主入口
"""
import asyncio
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import events as events_routes
from api.middleware import RequestIDMiddleware, LoggingMiddleware
from application.ports.fanout import FanoutPort
from application.services.broadcast_service import Broadcaster, new_instance_id
from core.config import settings
from core.exceptions import register_exception_handlers
from core.response import success_response
from core.logging_config import get_logger, configure_logging
from domain.broadcast.history import HistoryBuffer
from infrastructure.external.cache import (
    init_redis_client,
    get_redis_client,
    shutdown_redis_client,
)
from infrastructure.realtime.brokers import InMemoryFanoutBroker, RedisFanoutBroker
from infrastructure.realtime.registry import LocalRegistry


# 入口处再配置一次，确保 uvicorn 启动后安装的 handler 被替换
configure_logging()
logger = get_logger(__name__)


async def select_fanout() -> tuple[FanoutPort, str]:
    """根据 REALTIME_BROKER 选择 Broker，默认 auto -> redis(if url) else inmemory"""
    provider = (settings.REALTIME_BROKER or "auto").lower()
    if provider in {"redis", "auto"}:
        if settings.redis.url:
            try:
                await init_redis_client()
                logger.info("redis_initialized_for_fanout")
            except Exception as exc:
                # 启动时 Redis 不可用：仍使用 Redis broker，由监听任务退避重连
                logger.error("redis_init_failed", error=str(exc))
            broadcast = settings.broadcast
            broker = RedisFanoutBroker(
                initial_backoff_s=broadcast.reconnect_initial_backoff_s,
                max_backoff_s=broadcast.reconnect_max_backoff_s,
            )
            logger.info("fanout_broker_selected", provider="redis")
            return broker, "redis"
        if provider == "redis":
            logger.warning("fanout_broker_redis_missing_url", message="REDIS__URL not set, falling back to in-memory broker")
    elif provider != "inmemory":
        logger.warning("fanout_broker_unknown", provider=provider, fallback="inmemory")
    logger.info("fanout_broker_selected", provider="inmemory")
    return InMemoryFanoutBroker(), "inmemory"


def build_broadcaster(fanout: FanoutPort) -> Broadcaster:
    cfg = settings.broadcast
    return Broadcaster(
        instance_id=new_instance_id(cfg.instance_prefix),
        history=HistoryBuffer(capacity=cfg.history_capacity, default_limit=cfg.history_default_limit),
        registry=LocalRegistry(),
        fanout=fanout,
        channel=cfg.channel,
        queue_max=cfg.send_queue_max,
        overflow_policy=cfg.overflow_policy,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    fanout, provider = await select_fanout()
    broadcaster = build_broadcaster(fanout)
    await broadcaster.start()
    app.state.fanout_provider = provider
    app.state.broadcaster = broadcaster
    logger.info("broadcast_initialized", instance_id=broadcaster.instance_id, provider=provider)

    if settings.broadcast.announce_startup:
        await broadcaster.announce()
    ticker = None
    if settings.broadcast.ticker_interval_s > 0:
        ticker = asyncio.create_task(
            broadcaster.run_ticker(settings.broadcast.ticker_interval_s), name="broadcast-ticker"
        )

    yield

    # 关闭时的清理工作
    if ticker is not None:
        ticker.cancel()
        with suppress(asyncio.CancelledError):
            await ticker
    await broadcaster.aclose()
    if provider == "redis":
        await shutdown_redis_client()
    logger.info("application_shutdown", instance_id=broadcaster.instance_id)


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
    description="多实例 SSE 事件广播服务",
)

# 添加中间件（注意顺序：从下往上执行）
app.add_middleware(LoggingMiddleware)
app.add_middleware(RequestIDMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册全局异常处理器
register_exception_handlers(app)

# 注册路由
app.include_router(events_routes.router)


@app.get("/", tags=["Root"])
async def root():
    """服务信息"""
    broadcaster = getattr(app.state, "broadcaster", None)
    return success_response(
        data={
            "name": settings.PROJECT_NAME,
            "version": settings.VERSION,
            "instanceId": broadcaster.instance_id if broadcaster else None,
            "docs": "/docs",
        },
        message="SSE broadcast service",
    )


@app.get("/health", tags=["Health"])
async def health_check():
    """健康检查端点（fanout 不可用时降级为单实例模式，仍视为可服务）"""
    fanout = "inmemory"
    if getattr(app.state, "fanout_provider", None) == "redis":
        try:
            client = await get_redis_client()
            fanout = "ok" if await client.health_check() else "degraded"
        except Exception:
            fanout = "degraded"
    return success_response(data={"status": "healthy", "fanout": fanout})


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info"
    )
