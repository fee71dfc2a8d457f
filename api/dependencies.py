"""
API依赖项 - 从应用状态获取广播服务
"""
from fastapi import HTTPException, Request, status

from application.services.broadcast_service import Broadcaster


async def get_broadcaster(request: Request) -> Broadcaster:
    """获取本实例的 Broadcaster（由 lifespan 创建并挂到 app.state）"""
    broadcaster = getattr(request.app.state, "broadcaster", None)
    if broadcaster is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Broadcaster not initialized. Ensure lifespan sets app.state.broadcaster.",
        )
    return broadcaster
