"""
app.db
~~~~~~

MongoDB 连接管理与仓库层。

进程内只保留一个 ``AsyncIOMotorClient``：lifespan 启动时 ``connect_mongo()``，
关闭时 ``close_mongo()``，中间由 ``create_live_system()`` 通过 ``get_database()``
取得数据库句柄交给各仓库。

客户端以 ``tz_aware=True`` 创建，读出的时间字段均为 UTC aware datetime，
心跳超时比较依赖这一点。
"""
from __future__ import annotations

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import PyMongoError
from pymongo.uri_parser import parse_uri

from app.core.logging import get_logger
from app.core.settings import settings

logger = get_logger(__name__)

_client: AsyncIOMotorClient | None = None


def _describe_uri(uri: str) -> str:
    """只输出主机列表，日志里不出现用户名和密码。"""
    try:
        hosts = parse_uri(uri)["nodelist"]
    except PyMongoError:
        return "<invalid uri>"
    return ",".join(f"{host}:{port}" for host, port in hosts)


async def connect_mongo() -> None:
    """创建客户端并 ping 一次，连不上直接抛出，让应用启动失败。"""
    global _client
    _client = AsyncIOMotorClient(
        settings.MONGO_URI,
        tz_aware=True,
        appname=settings.PROJECT_NAME,
        serverSelectionTimeoutMS=settings.MONGO_TIMEOUT_MS,
    )
    try:
        await _client[settings.MONGO_DB_NAME].command("ping")
    except Exception as e:
        logger.error("MongoDB 连接失败 | hosts=%s | %s", _describe_uri(settings.MONGO_URI), e)
        _client.close()
        _client = None
        raise
    logger.info(
        "MongoDB 已连接 | hosts=%s | db=%s",
        _describe_uri(settings.MONGO_URI),
        settings.MONGO_DB_NAME,
    )


async def close_mongo() -> None:
    global _client
    if _client is None:
        return
    _client.close()
    _client = None
    logger.info("MongoDB 连接已关闭")


def get_database() -> AsyncIOMotorDatabase:
    """获取业务数据库。

    Raises:
        RuntimeError: 在 ``connect_mongo()`` 之前调用。
    """
    if _client is None:
        raise RuntimeError("MongoDB 尚未初始化，请先调用 connect_mongo()")
    return _client[settings.MONGO_DB_NAME]
