from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from double_ai.config import Config


def build_engine(database_url: str):
    """
    SQLite 仅用于本地开发 / 测试：
    in-memory 库必须共享同一个连接，且允许跨线程（asyncio.to_thread）
    """
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(
        database_url,
        pool_pre_ping=True,
    )


engine = build_engine(Config.database_url)

SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
)
