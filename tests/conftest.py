"""
Configuración de pytest para tests
"""
import pytest
from datetime import date, datetime
from httpx import AsyncClient, ASGITransport
from mongomock_motor import AsyncMongoMockClient

from app.main import app
from app.db import get_db
from app.domain.temporal import to_datetime
from app.security import create_access_token


# Deshabilitar rate limiting en la app para todos los tests
@pytest.fixture(autouse=True)
def disable_rate_limiting():
    app.state.limiter = None


@pytest.fixture
def db():
    """Base de datos en memoria, nueva para cada test"""
    return AsyncMongoMockClient()["toollend_test"]


@pytest.fixture
async def client(db):
    """Cliente HTTP contra la app con la base de datos de test inyectada"""
    app.dependency_overrides[get_db] = lambda: db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def auth():
    def _headers(user_id: str) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}
    return _headers


class Seed:
    """Inserta directamente usuarios, herramientas y reservas"""

    def __init__(self, db):
        self.db = db

    async def user(self, name: str = "Ana", **fields) -> str:
        doc = {
            "name": name,
            "email": f"{name.lower()}@example.com",
            "active": True,
            "communities": [],
            **fields,
        }
        res = await self.db.users.insert_one(doc)
        return str(res.inserted_id)

    async def tool(self, owner_id: str, **fields) -> str:
        doc = {
            "title": "Taladro percutor",
            "owner_id": owner_id,
            "is_nomadic": False,
            "communities": [],
            "max_distance_km": 0,
            **fields,
        }
        res = await self.db.tools.insert_one(doc)
        return str(res.inserted_id)

    async def booking(
        self,
        tool_id: str,
        from_user_id: str,
        to_user_id: str,
        start: date,
        end: date,
        status: str = "PENDING",
        created_at: datetime = None,
        **fields,
    ):
        created_at = created_at or datetime.utcnow()
        doc = {
            "tool_id": tool_id,
            "from_user_id": from_user_id,
            "to_user_id": to_user_id,
            "start_date": to_datetime(start),
            "end_date": to_datetime(end),
            "contact": "",
            "comments": "",
            "status": status,
            "is_nomadic": False,
            "created_at": created_at,
            "updated_at": created_at,
            **fields,
        }
        res = await self.db.bookings.insert_one(doc)
        return res.inserted_id


@pytest.fixture
def seed(db):
    return Seed(db)


class RecordingDispatcher:
    """Dispatcher de notificaciones que solo apunta lo que se envía"""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    async def send(self, user, kind, payload):
        if self.fail:
            raise RuntimeError("servidor de correo caído")
        self.sent.append((str(user["_id"]), kind, payload))


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def failing_dispatcher():
    return RecordingDispatcher(fail=True)
