import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key-with-enough-length-for-hs256")

from datetime import timedelta
from decimal import Decimal
from itertools import count
from typing import Iterable, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from backend.app.main import app
from backend.app.security import create_access_token, hash_password
from backend.database import get_db_session, init_models
from backend.models import (
    Admin,
    AdminRole,
    Room,
    RoomPlayer,
    RoomStatus,
    Transaction,
    TransactionStatus,
    TransactionType,
    User,
    WinnerRequest,
    WinnerRequestStatus,
    WithdrawalRequest,
    WithdrawalStatus,
    utcnow,
)


ADMIN_PASSWORD = "secret123"


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'admin.db'}")
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory):
    async def override_get_db_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db_session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


class Factory:
    """Crea filas de prueba, cada una en su propia transacción."""

    def __init__(self, session_factory):
        self.session_factory = session_factory
        self._seq = count(1)

    async def _save(self, *objects):
        async with self.session_factory() as session:
            session.add_all(objects)
            await session.commit()
        return objects[0]

    async def admin(self, username: str = "admin", password: str = ADMIN_PASSWORD, **kwargs) -> Admin:
        kwargs.setdefault("role", AdminRole.SUPER_ADMIN)
        return await self._save(Admin(username=username, password_hash=hash_password(password), **kwargs))

    async def user(self, name: Optional[str] = None, balance: str = "0", **kwargs) -> User:
        n = next(self._seq)
        kwargs.setdefault("phone", f"98765{n:05d}")
        return await self._save(User(name=name or f"Player {n}", balance=Decimal(balance), **kwargs))

    async def room(
        self,
        players: Iterable[User] = (),
        amount: str = "50",
        status: RoomStatus = RoomStatus.PLAYING,
        room_code: Optional[str] = None,
        **kwargs
    ) -> Room:
        players = list(players)
        n = next(self._seq)
        room = Room(
            room_code=room_code or f"LUDO{n:04d}",
            amount=Decimal(amount),
            status=status,
            created_by_id=players[0].id if players else None,
            **kwargs
        )
        room.players = [
            RoomPlayer(user_id=p.id, joined_at=utcnow() + timedelta(seconds=i))
            for i, p in enumerate(players)
        ]
        return await self._save(room)

    async def transaction(
        self,
        user: Optional[User],
        tx_type: TransactionType = TransactionType.DEPOSIT,
        amount: str = "100",
        status: TransactionStatus = TransactionStatus.COMPLETED,
        **kwargs
    ) -> Transaction:
        return await self._save(Transaction(
            user_id=user.id if user else None,
            type=tx_type,
            amount=Decimal(amount),
            status=status,
            description=f"{tx_type.value} for tests",
            **kwargs
        ))

    async def winner_request(
        self,
        room: Room,
        declared_by: User,
        winner: User,
        pool: str = "100",
        fee: str = "10",
        **kwargs
    ) -> WinnerRequest:
        pool = Decimal(pool)
        fee = Decimal(fee)
        kwargs.setdefault("status", WinnerRequestStatus.PENDING)
        return await self._save(WinnerRequest(
            room_id=room.id,
            declared_by_id=declared_by.id,
            declared_winner_id=winner.id,
            total_prize_pool=pool,
            platform_fee=fee,
            winner_amount=pool - fee,
            **kwargs
        ))

    async def withdrawal(self, user: User, amount: str = "200", upi_id: str = "player@upi") -> WithdrawalRequest:
        """Solicitud pendiente con su transacción de retiro ya debitada."""
        tx = Transaction(
            user_id=user.id,
            type=TransactionType.WITHDRAWAL,
            amount=Decimal(amount),
            status=TransactionStatus.PENDING,
            description="Withdrawal request",
        )
        await self._save(tx)
        return await self._save(WithdrawalRequest(
            user_id=user.id,
            transaction_id=tx.id,
            amount=Decimal(amount),
            upi_id=upi_id,
            status=WithdrawalStatus.PENDING,
        ))


@pytest.fixture
def factory(session_factory):
    return Factory(session_factory)


@pytest.fixture
async def admin(factory):
    return await factory.admin()


@pytest.fixture
def auth_headers(admin):
    return {"Authorization": f"Bearer {create_access_token(admin)}"}


@pytest.fixture
def api():
    return "/api/admin"
