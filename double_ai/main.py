import os
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from double_ai import __version__
from double_ai.api.deps import shutdown_workspace
from double_ai.api.routes.chat import router as chat_router
from double_ai.api.routes.settings import router as settings_router
from double_ai.config import Config, setup_logging
from double_ai.database.db.models import Base
from double_ai.database.db.session import engine

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    # Create any missing tables on startup
    Base.metadata.create_all(bind=engine)
    if not Config.security.encryption_secret:
        logger.warning("⚠️ SECURITY__ENCRYPTION_SECRET is not set, chat and settings routes will answer 503")
    logger.info(f"🚀 Double AI backend {__version__} started")
    yield
    # 等待后台任务（标题生成 / 标题同步）结束
    await shutdown_workspace()


app = FastAPI(title="Double AI API", version=__version__, lifespan=lifespan)

# CORS 配置：开发环境允许所有来源，生产环境限制为指定来源
is_dev = os.getenv("ENV", "development") == "development"
cors_origins = (
    ["*"]  # 开发环境允许所有来源
    if is_dev
    else [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True if not is_dev else False,  # 使用 "*" 时不能设置 credentials=True
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
)

app.include_router(chat_router)
app.include_router(settings_router)


@app.get("/api/health")
async def health_check():
    return {"status": "ok", "version": __version__}
