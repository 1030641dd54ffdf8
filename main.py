"""
FastAPI应用主入口
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from api.routes import user
from api.routes import cable as cable_routes
from api.middleware import RequestIDMiddleware, LoggingMiddleware
from application.ports.realtime import RealtimeBrokerPort
from application.services.realtime_service import RealtimeService
from core.config import settings
from core.exceptions import register_exception_handlers
from core.response import success_response
from core.logging_config import get_logger, configure_logging
from infrastructure.database import create_tables, dispose_engine
from infrastructure.external.cache import init_redis_client, shutdown_redis_client
from infrastructure.realtime.connection_manager import ConnectionManager
from infrastructure.realtime.brokers import InMemoryRealtimeBroker, RedisRealtimeBroker


# 初始化日志：在入口处显式配置，避免模块导入时的副作用
configure_logging()
logger = get_logger(__name__)


async def _select_broker() -> RealtimeBrokerPort:
    """选择 Broker：REALTIME_BROKER=auto 时有 REDIS__URL 用 redis，否则内存版"""
    provider = (settings.REALTIME_BROKER or "auto").lower()
    if provider in {"redis", "auto"} and settings.redis.url:
        try:
            client = await init_redis_client()
            logger.info("realtime_broker_selected", provider="redis")
            return RedisRealtimeBroker(client)
        except Exception as exc:
            logger.error("realtime_broker_init_failed", provider="redis", error=str(exc))
    elif provider == "redis":
        logger.warning("realtime_broker_redis_missing_url", message="REDIS__URL not set, falling back to in-memory broker")
    elif provider not in {"auto", "inmemory"}:
        logger.warning("realtime_broker_unknown", provider=provider, fallback="inmemory")
    logger.info("realtime_broker_selected", provider="inmemory")
    return InMemoryRealtimeBroker()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    # 启动时创建数据库表（仅开发环境）。生产应使用 Alembic 迁移
    if settings.DEBUG:
        await create_tables()
        logger.info("database_initialized", message="Database tables created (development)")
    else:
        logger.info(
            "database_migrations_required",
            message="No auto-create in production, use Alembic migrations (alembic upgrade head)"
        )

    # 初始化实时通信（WebSocket 广播通道）
    broker = await _select_broker()
    conn_mgr = ConnectionManager()
    realtime = RealtimeService(
        broker=broker,
        connections=conn_mgr,
        channels=[settings.APPEARANCE_CHANNEL],
    )
    await broker.subscribe(realtime.on_broker_event)
    app.state.realtime_service = realtime
    logger.info("realtime_initialized", channel=settings.APPEARANCE_CHANNEL)

    yield

    # 关闭时的清理工作
    try:
        await broker.aclose()
    except Exception as exc:
        logger.warning("realtime_broker_close_failed", error=str(exc))
    if settings.redis.url:
        await shutdown_redis_client()
    await dispose_engine()
    logger.info("application_shutdown", message="Application shutdown")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
    description="用户在线状态（appearance）REST + WebSocket 广播服务",
)

# 添加中间件（注意顺序：从下往上执行）
# 1. Request ID中间件（最先执行，为后续中间件提供request_id）
app.add_middleware(RequestIDMiddleware)

# 2. 日志中间件（依赖request_id）
app.add_middleware(LoggingMiddleware)

# 3. CORS中间件
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
app.include_router(user.router, prefix="/api/v1")
app.include_router(cable_routes.router)


# 根路径
@app.get("/", tags=["Root"])
async def root():
    """API根路径"""
    return success_response(
        data={
            "name": settings.PROJECT_NAME,
            "version": settings.VERSION,
            "docs": "/docs",
            "cable": "/cable",
        },
        message="Welcome"
    )


# 健康检查
@app.get("/health", tags=["Health"])
async def health_check():
    """健康检查端点"""
    return success_response(data={"status": "healthy"}, message="OK")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info"
    )
