from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from .config import get_settings

_settings = get_settings()
_client: AsyncIOMotorClient | None = None
_db: AsyncIOMotorDatabase | None = None


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    await db.users.create_index("email", unique=True)
    await db.tools.create_index([("owner_id", 1)])
    # Búsqueda de solapes por herramienta
    await db.bookings.create_index([("tool_id", 1), ("start_date", 1), ("end_date", 1)])
    # Listados de peticiones entrantes/salientes, más recientes primero
    await db.bookings.create_index([("from_user_id", 1), ("created_at", -1)])
    await db.bookings.create_index([("to_user_id", 1), ("created_at", -1)])
    await db.bookings.create_index([("ratings.owner.to_user_id", 1)])
    await db.bookings.create_index([("ratings.requester.to_user_id", 1)])
    await db.notifications.create_index([("user_id", 1), ("created_at", -1)])


async def get_db() -> AsyncIOMotorDatabase:
    global _client, _db
    if _db is None:
        _client = AsyncIOMotorClient(
            _settings.mongodb_uri,
            serverSelectionTimeoutMS=int(_settings.store_timeout_seconds * 1000),
        )
        _db = _client[_settings.db_name]
        await ensure_indexes(_db)
    return _db
