"""
=============================================================================
LUDO LOOTO ADMIN - Endpoints de Administración
=============================================================================
API REST para el panel de administración.
Incluye:
- Autenticación de administradores (JWT)
- Estadísticas del dashboard, ingresos y sistema
- Consultas de usuarios, salas y transacciones con filtros y paginación
- Verificación de ganadores y aprobación de retiros
- Exportación de datos
=============================================================================
"""

import logging
import math
import platform
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..database import get_db_session
from ..models import (
    Admin,
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
    as_utc,
    to_money,
    utcnow,
)
from . import settlement
from .schemas import (
    AdminOut,
    ApproveWinnerRequestBody,
    ApproveWithdrawalRequestBody,
    BalanceUpdateRequest,
    BlockUserRequest,
    ChangePasswordRequest,
    DeclareWinnerRequest,
    LoginRequest,
    Pagination,
    ReasonRequest,
    RoomOut,
    RoomSummary,
    TransactionOut,
    UserOut,
    WinnerRequestOut,
    WithdrawalRequestOut,
)
from .security import (
    authenticate_admin,
    create_access_token,
    get_current_admin,
    hash_password,
    verify_password,
)


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])

STARTED_AT = time.time()


# =============================================================================
# HELPERS
# =============================================================================

def ok(data: Any = None, message: str = "OK") -> Dict[str, Any]:
    """Envoltorio estándar de respuestas exitosas."""
    return {"success": True, "message": message, "data": data}


def _enum_pattern(enum_cls) -> str:
    return "^(all|" + "|".join(member.value for member in enum_cls) + ")$"


def _order(columns: Dict[str, Any], sort_by: str, sort_order: str):
    column = columns.get(sort_by)
    if column is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid sort field: {sort_by}. Allowed: {', '.join(sorted(columns))}"
        )
    return column.desc() if sort_order == "desc" else column.asc()


def _to_utc(value: datetime) -> datetime:
    """Los datetimes se guardan en UTC; un valor naive se interpreta como UTC."""
    return as_utc(value).astimezone(timezone.utc)


def _date_filters(column, start_date: Optional[datetime], end_date: Optional[datetime]) -> List[Any]:
    filters = []
    if start_date is not None:
        filters.append(column >= _to_utc(start_date))
    if end_date is not None:
        filters.append(column <= _to_utc(end_date))
    return filters


async def _paginate(
    db: AsyncSession,
    model,
    filters: Sequence[Any],
    order_by,
    page: int,
    limit: int,
    options: Sequence[Any] = ()
) -> Tuple[List[Any], Pagination]:
    total = (
        await db.execute(select(func.count()).select_from(model).where(*filters))
    ).scalar_one()

    result = await db.execute(
        select(model)
        .where(*filters)
        .options(*options)
        .order_by(order_by, model.id)
        .offset((page - 1) * limit)
        .limit(limit)
        .execution_options(populate_existing=True)
    )
    pagination = Pagination(
        current_page=page,
        total_pages=math.ceil(total / limit) if total else 0,
        total_items=total,
        items_per_page=limit,
    )
    return list(result.scalars().all()), pagination


def _page_payload(items: List[Any], pagination: Pagination) -> Dict[str, Any]:
    return {"items": items, "pagination": pagination}


# Relaciones que cada representación necesita cargadas (sin lazy-load en async)
ROOM_LOAD = (
    selectinload(Room.players).selectinload(RoomPlayer.user),
    selectinload(Room.created_by),
    selectinload(Room.winner),
)

TX_LOAD = (
    selectinload(Transaction.user),
    selectinload(Transaction.room),
    selectinload(Transaction.processed_by),
)

WINNER_REQUEST_LOAD = (
    selectinload(WinnerRequest.room).selectinload(Room.players).selectinload(RoomPlayer.user),
    selectinload(WinnerRequest.room).selectinload(Room.created_by),
    selectinload(WinnerRequest.room).selectinload(Room.winner),
    selectinload(WinnerRequest.declared_by),
    selectinload(WinnerRequest.declared_winner),
    selectinload(WinnerRequest.processed_by),
)

WITHDRAWAL_LOAD = (
    selectinload(WithdrawalRequest.user),
    selectinload(WithdrawalRequest.transaction),
    selectinload(WithdrawalRequest.processed_by),
)


async def _fetch_one(db: AsyncSession, model, criteria, options: Sequence[Any]):
    result = await db.execute(
        select(model)
        .where(criteria)
        .options(*options)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _get_user_or_404(db: AsyncSession, user_id: UUID) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


def _user_rooms_filter(user_id: UUID):
    """Salas creadas por el usuario o en las que participa."""
    return or_(
        Room.created_by_id == user_id,
        Room.id.in_(select(RoomPlayer.room_id).where(RoomPlayer.user_id == user_id)),
    )


async def _recent_rooms(db: AsyncSession, user_id: UUID, limit: int = 10) -> List[RoomSummary]:
    result = await db.execute(
        select(Room)
        .where(_user_rooms_filter(user_id))
        .order_by(Room.created_at.desc())
        .limit(limit)
    )
    return [RoomSummary.model_validate(room) for room in result.scalars()]


def _money(value) -> str:
    return str(to_money(value or 0))


# =============================================================================
# ENDPOINTS: AUTENTICACIÓN
# =============================================================================

@router.post("/login")
async def admin_login(
    request: LoginRequest,
    db: AsyncSession = Depends(get_db_session)
):
    """Valida credenciales y emite un JWT."""
    admin = await authenticate_admin(db, request.username, request.password)
    token = create_access_token(admin)
    return ok({"admin": AdminOut.model_validate(admin), "token": token}, "Login successful")


@router.post("/logout")
async def admin_logout(admin: Admin = Depends(get_current_admin)):
    """Los tokens no tienen estado en servidor; el cliente los descarta."""
    logger.info("[AUTH] Logout: %s", admin.username)
    return ok(None, "Logged out successfully")


@router.put("/change-password")
async def change_admin_password(
    request: ChangePasswordRequest,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db_session)
):
    if not verify_password(request.current_password, admin.password_hash):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Current password is incorrect")

    admin.password_hash = hash_password(request.new_password)
    await db.commit()
    logger.info("[AUTH] Contraseña actualizada: %s", admin.username)
    return ok(None, "Password changed successfully")


# =============================================================================
# ENDPOINTS: DASHBOARD Y ESTADÍSTICAS
# =============================================================================

@router.get("/dashboard/stats")
async def get_dashboard_stats(
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db_session)
):
    """
    Estadísticas generales para el dashboard de administración.
    """
    async def count(model, *filters) -> int:
        return (await db.execute(select(func.count()).select_from(model).where(*filters))).scalar_one()

    today = utcnow().replace(hour=0, minute=0, second=0, microsecond=0)

    total_users = await count(User)
    active_users = await count(User, User.is_active.is_(True))
    total_rooms = await count(Room)
    active_rooms = await count(Room, Room.status.in_([RoomStatus.WAITING, RoomStatus.PLAYING]))
    completed_rooms = await count(Room, Room.status == RoomStatus.COMPLETED)
    pending_winner_requests = await count(
        WinnerRequest, WinnerRequest.status == WinnerRequestStatus.PENDING
    )
    pending_withdrawals = await count(
        WithdrawalRequest, WithdrawalRequest.status == WithdrawalStatus.PENDING
    )

    total_revenue = (
        await db.execute(
            select(func.sum(Transaction.amount)).where(
                Transaction.type == TransactionType.PLATFORM_FEE,
                Transaction.status == TransactionStatus.COMPLETED,
            )
        )
    ).scalar_one()

    today_rows = await db.execute(
        select(Transaction.type, func.sum(Transaction.amount))
        .where(
            Transaction.created_at >= today,
            Transaction.status == TransactionStatus.COMPLETED,
        )
        .group_by(Transaction.type)
    )
    today_totals = {tx_type: total for tx_type, total in today_rows.all()}

    recent_users = await db.execute(select(User).order_by(User.created_at.desc()).limit(5))
    top_winners = await db.execute(
        select(User)
        .where(User.total_wins > 0)
        .order_by(User.total_winnings.desc())
        .limit(5)
    )

    stats = {
        "overview": {
            "total_users": total_users,
            "active_users": active_users,
            "total_rooms": total_rooms,
            "active_rooms": active_rooms,
            "completed_rooms": completed_rooms,
            "total_revenue": _money(total_revenue),
            "pending_winner_requests": pending_winner_requests,
            "pending_withdrawal_requests": pending_withdrawals,
        },
        "period_stats": {
            "today": {
                "deposits": _money(today_totals.get(TransactionType.DEPOSIT)),
                "withdrawals": _money(today_totals.get(TransactionType.WITHDRAWAL)),
                "game_revenue": _money(today_totals.get(TransactionType.PLATFORM_FEE)),
            }
        },
        "recent_activity": {
            "users": [UserOut.model_validate(u) for u in recent_users.scalars()],
        },
        "top_winners": [UserOut.model_validate(u) for u in top_winners.scalars()],
    }
    return ok(stats, "Dashboard stats retrieved successfully")


@router.get("/system/stats")
async def get_system_stats(
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db_session)
):
    """Estado del proceso y conteo de filas por tabla."""
    tables = {
        "users": User,
        "admins": Admin,
        "rooms": Room,
        "transactions": Transaction,
        "winner_requests": WinnerRequest,
        "withdrawal_requests": WithdrawalRequest,
    }
    counts = {}
    for name, model in tables.items():
        counts[name] = (await db.execute(select(func.count()).select_from(model))).scalar_one()

    stats = {
        "server": {
            "uptime": round(time.time() - STARTED_AT, 3),
            "python_version": platform.python_version(),
            "platform": platform.platform(),
        },
        "database": {
            "dialect": db.bind.dialect.name if db.bind is not None else None,
            "tables": counts,
        },
    }
    return ok(stats, "System stats retrieved successfully")


REVENUE_PERIODS = {
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
    "1y": timedelta(days=365),
}


@router.get("/revenue/stats")
async def get_revenue_stats(
    period: str = Query("30d"),
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db_session)
):
    """
    Ingresos y volumen por tipo de transacción en el periodo (7d, 30d, 90d, 1y).
    Un periodo desconocido se trata como 30d.
    """
    if period not in REVENUE_PERIODS:
        period = "30d"
    end_date = utcnow()
    start_date = end_date - REVENUE_PERIODS[period]

    window = (
        Transaction.created_at >= start_date,
        Transaction.created_at <= end_date,
        Transaction.status == TransactionStatus.COMPLETED,
    )

    totals_rows = await db.execute(
        select(Transaction.type, func.sum(Transaction.amount), func.count())
        .where(*window)
        .group_by(Transaction.type)
    )
    transactions: Dict[str, Dict[str, Any]] = {}
    for tx_type, total, tx_count in totals_rows.all():
        total = to_money(total or 0)
        transactions[tx_type.value] = {
            "total_amount": str(total),
            "total_count": tx_count,
            "average_amount": str(to_money(total / tx_count)) if tx_count else "0.00",
        }

    day = func.date(Transaction.created_at).label("day")
    chart_rows = await db.execute(
        select(Transaction.type, day, func.sum(Transaction.amount), func.count())
        .where(*window)
        .group_by(Transaction.type, day)
        .order_by(day)
    )
    chart_data: Dict[str, List[Dict[str, Any]]] = {}
    for tx_type, tx_day, total, tx_count in chart_rows.all():
        chart_data.setdefault(tx_type.value, []).append({
            "date": str(tx_day),
            "amount": _money(total),
            "count": tx_count,
        })

    total_games = (
        await db.execute(
            select(func.count()).select_from(Room).where(
                Room.created_at >= start_date,
                Room.created_at <= end_date,
                Room.status == RoomStatus.COMPLETED,
            )
        )
    ).scalar_one()

    def total_for(tx_type: TransactionType) -> Decimal:
        return Decimal(transactions.get(tx_type.value, {}).get("total_amount", "0.00"))

    # Las re-declaraciones acreditan un GAME_WIN y revierten el anterior
    prize_pool_paid = total_for(TransactionType.GAME_WIN) - total_for(TransactionType.ADMIN_REVERSAL)

    stats = {
        "period": period,
        "start_date": start_date.isoformat(),
        "end_date": end_date.isoformat(),
        "revenue": {
            "platform_fee": str(total_for(TransactionType.PLATFORM_FEE)),
            "total_games": total_games,
            "total_prize_pool": str(to_money(prize_pool_paid)),
        },
        "transactions": transactions,
        "chart_data": chart_data,
    }
    return ok(stats, "Revenue stats retrieved successfully")


# =============================================================================
# ENDPOINTS: USUARIOS
# =============================================================================

USER_SORT = {
    "created_at": User.created_at,
    "name": User.name,
    "balance": User.balance,
    "total_games": User.total_games,
    "total_wins": User.total_wins,
    "total_winnings": User.total_winnings,
}


@router.get("/users")
async def list_users(
    search: Optional[str] = Query(None),
    status_filter: str = Query("all", alias="status", pattern="^(all|active|blocked)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: str = Query("created_at"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db_session)
):
    """
    Lista usuarios con búsqueda por nombre o teléfono.
    """
    filters = []
    if search:
        filters.append(or_(
            User.name.icontains(search, autoescape=True),
            User.phone.icontains(search, autoescape=True),
        ))
    if status_filter != "all":
        filters.append(User.is_active.is_(status_filter == "active"))

    users, pagination = await _paginate(
        db, User, filters, _order(USER_SORT, sort_by, sort_order), page, limit
    )
    items = [UserOut.model_validate(u) for u in users]
    return ok(_page_payload(items, pagination), "Users retrieved successfully")


@router.get("/users/{user_id}")
async def get_user_details(
    user_id: UUID,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db_session)
):
    user = await _get_user_or_404(db, user_id)

    recent_transactions = await db.execute(
        select(Transaction)
        .where(Transaction.user_id == user_id)
        .options(*TX_LOAD)
        .order_by(Transaction.created_at.desc())
        .limit(10)
    )

    details = UserOut.model_validate(user).model_dump(mode="json")
    details["recent_transactions"] = [
        TransactionOut.model_validate(tx) for tx in recent_transactions.scalars()
    ]
    details["recent_rooms"] = await _recent_rooms(db, user_id)
    return ok(details, "User details retrieved successfully")


@router.put("/users/{user_id}/block")
async def block_user(
    user_id: UUID,
    request: Optional[BlockUserRequest] = None,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db_session)
):
    user = await _get_user_or_404(db, user_id)
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User is already blocked")

    request = request or BlockUserRequest()

    user.is_active = False
    user.block_reason = request.reason or "Blocked by admin"
    user.blocked_at = utcnow()
    user.blocked_by_id = admin.id
    await db.commit()

    logger.info("[ADMIN] Usuario %s bloqueado por %s", user.id, admin.username)
    return ok(None, "User blocked successfully")


@router.put("/users/{user_id}/unblock")
async def unblock_user(
    user_id: UUID,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db_session)
):
    user = await _get_user_or_404(db, user_id)
    if user.is_active:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User is not blocked")

    user.is_active = True
    user.block_reason = None
    user.blocked_at = None
    user.blocked_by_id = None
    await db.commit()

    logger.info("[ADMIN] Usuario %s desbloqueado por %s", user.id, admin.username)
    return ok(None, "User unblocked successfully")


@router.put("/users/{user_id}/balance")
async def update_user_balance(
    user_id: UUID,
    request: BalanceUpdateRequest,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db_session)
):
    """
    Crédito (add) o débito (deduct) manual con registro en el ledger.
    """
    user, old_balance, tx = await settlement.adjust_user_balance(
        db, admin, user_id, request.amount, request.type, request.reason
    )
    tx = await _fetch_one(db, Transaction, Transaction.id == tx.id, TX_LOAD)

    data = {
        "user": {
            "id": user.id,
            "name": user.name,
            "phone": user.phone,
            "old_balance": str(old_balance),
            "new_balance": _money(user.balance),
            "amount_changed": str(tx.amount),
            "type": request.type,
        },
        "transaction": TransactionOut.model_validate(tx),
    }
    verb = "credited" if request.type == "add" else "debited"
    return ok(data, f"User balance {verb} successfully")


@router.get("/users/{user_id}/activity")
async def get_user_activity(
    user_id: UUID,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db_session)
):
    user = await _get_user_or_404(db, user_id)

    transactions, pagination = await _paginate(
        db,
        Transaction,
        [Transaction.user_id == user_id],
        Transaction.created_at.desc(),
        page,
        limit,
        TX_LOAD,
    )
    data = {
        "user": UserOut.model_validate(user),
        "transactions": [TransactionOut.model_validate(tx) for tx in transactions],
        "rooms": await _recent_rooms(db, user_id),
        "pagination": pagination,
    }
    return ok(data, "User activity retrieved successfully")


# =============================================================================
# ENDPOINTS: SALAS
# =============================================================================

ROOM_SORT = {
    "created_at": Room.created_at,
    "amount": Room.amount,
    "status": Room.status,
    "completed_at": Room.completed_at,
}


@router.get("/rooms")
async def list_rooms(
    search: Optional[str] = Query(None),
    status_filter: str = Query("all", alias="status", pattern=_enum_pattern(RoomStatus)),
    game_type: str = Query("all"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: str = Query("created_at"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db_session)
):
    filters = []
    if status_filter != "all":
        filters.append(Room.status == RoomStatus(status_filter))
    if game_type != "all":
        filters.append(Room.game_type == game_type)
    if search:
        filters.append(Room.room_code.icontains(search, autoescape=True))

    rooms, pagination = await _paginate(
        db, Room, filters, _order(ROOM_SORT, sort_by, sort_order), page, limit, ROOM_LOAD
    )
    items = [RoomOut.model_validate(r) for r in rooms]
    return ok(_page_payload(items, pagination), "Rooms retrieved successfully")


@router.get("/rooms/{room_code}")
async def get_room_details(
    room_code: str,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db_session)
):
    room = await _fetch_one(db, Room, Room.room_code == room_code, ROOM_LOAD)
    if room is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room not found")

    transactions = await db.execute(
        select(Transaction)
        .where(Transaction.room_id == room.id)
        .options(*TX_LOAD)
        .order_by(Transaction.created_at.desc())
    )
    data = {
        "room": RoomOut.model_validate(room),
        "transactions": [TransactionOut.model_validate(tx) for tx in transactions.scalars()],
    }
    return ok(data, "Room details retrieved successfully")


@router.put("/rooms/{room_code}/declare-winner")
async def declare_correct_winner(
    room_code: str,
    request: DeclareWinnerRequest,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db_session)
):
    """
    Corrige el ganador de una sala completada: revierte el premio anterior y
    acredita al nuevo ganador.
    """
    room = await settlement.declare_correct_winner(
        db, admin, room_code, request.winner_id, request.reason
    )
    room = await _fetch_one(db, Room, Room.id == room.id, ROOM_LOAD)
    return ok(RoomOut.model_validate(room), "Correct winner declared successfully")


@router.put("/rooms/{room_code}/cancel")
async def cancel_room(
    room_code: str,
    request: ReasonRequest,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db_session)
):
    room, refunds = await settlement.cancel_room(db, admin, room_code, request.reason)
    room = await _fetch_one(db, Room, Room.id == room.id, ROOM_LOAD)
    data = {
        "room": RoomOut.model_validate(room),
        "refunded_players": len(refunds),
        "refunded_total": _money(sum((tx.amount for tx in refunds), Decimal("0"))),
    }
    return ok(data, "Room cancelled and players refunded successfully")


# =============================================================================
# ENDPOINTS: TRANSACCIONES (LEDGER)
# =============================================================================

TX_SORT = {
    "created_at": Transaction.created_at,
    "amount": Transaction.amount,
    "type": Transaction.type,
    "status": Transaction.status,
}


@router.get("/transactions")
async def list_transactions(
    type_filter: str = Query("all", alias="type", pattern=_enum_pattern(TransactionType)),
    status_filter: str = Query("all", alias="status", pattern=_enum_pattern(TransactionStatus)),
    user_id: Optional[UUID] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: str = Query("created_at"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db_session)
):
    """
    Lista transacciones del ledger con filtros opcionales.
    """
    filters = _date_filters(Transaction.created_at, start_date, end_date)
    if type_filter != "all":
        filters.append(Transaction.type == TransactionType(type_filter))
    if status_filter != "all":
        filters.append(Transaction.status == TransactionStatus(status_filter))
    if user_id is not None:
        filters.append(Transaction.user_id == user_id)

    transactions, pagination = await _paginate(
        db, Transaction, filters, _order(TX_SORT, sort_by, sort_order), page, limit, TX_LOAD
    )
    items = [TransactionOut.model_validate(tx) for tx in transactions]
    return ok(_page_payload(items, pagination), "Transactions retrieved successfully")


@router.get("/transactions/{transaction_id}")
async def get_transaction_details(
    transaction_id: UUID,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db_session)
):
    tx = await _fetch_one(db, Transaction, Transaction.id == transaction_id, TX_LOAD)
    if tx is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Transaction not found")
    return ok(TransactionOut.model_validate(tx), "Transaction details retrieved successfully")


@router.post("/transactions/{transaction_id}/refund")
async def process_refund(
    transaction_id: UUID,
    request: ReasonRequest,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db_session)
):
    original, refund = await settlement.refund_transaction(db, admin, transaction_id, request.reason)
    original = await _fetch_one(db, Transaction, Transaction.id == original.id, TX_LOAD)
    refund = await _fetch_one(db, Transaction, Transaction.id == refund.id, TX_LOAD)
    data = {
        "original_transaction": TransactionOut.model_validate(original),
        "refund_transaction": TransactionOut.model_validate(refund),
    }
    return ok(data, "Refund processed successfully")


# =============================================================================
# ENDPOINT: EXPORTACIÓN DE DATOS
# =============================================================================

EXPORTS = {
    "users": (User, User.created_at, (), UserOut),
    "transactions": (Transaction, Transaction.created_at, TX_LOAD, TransactionOut),
    "rooms": (Room, Room.created_at, ROOM_LOAD, RoomOut),
    "winner-requests": (WinnerRequest, WinnerRequest.created_at, WINNER_REQUEST_LOAD, WinnerRequestOut),
    "withdrawal-requests": (
        WithdrawalRequest, WithdrawalRequest.requested_at, WITHDRAWAL_LOAD, WithdrawalRequestOut
    ),
}


@router.get("/export/{export_type}")
async def export_data(
    export_type: str,
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db_session)
):
    if export_type not in EXPORTS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid export type")

    model, date_column, options, schema = EXPORTS[export_type]
    result = await db.execute(
        select(model)
        .where(*_date_filters(date_column, start_date, end_date))
        .options(*options)
        .order_by(date_column)
        .execution_options(populate_existing=True)
    )
    data = [schema.model_validate(row) for row in result.scalars()]

    logger.info("[ADMIN] Exportación %s (%d filas) por %s", export_type, len(data), admin.username)
    return ok(data, f"{export_type} data exported successfully")


# =============================================================================
# ENDPOINTS: VERIFICACIÓN DE GANADORES
# =============================================================================

WINNER_REQUEST_SORT = {
    "created_at": WinnerRequest.created_at,
    "winner_amount": WinnerRequest.winner_amount,
    "processed_at": WinnerRequest.processed_at,
}


async def _winner_request_or_404(db: AsyncSession, request_id: UUID) -> WinnerRequest:
    request = await _fetch_one(db, WinnerRequest, WinnerRequest.id == request_id, WINNER_REQUEST_LOAD)
    if request is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Winner request not found")
    return request


@router.get("/winner-requests")
async def list_winner_requests(
    search: Optional[str] = Query(None),
    status_filter: str = Query("all", alias="status", pattern=_enum_pattern(WinnerRequestStatus)),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: str = Query("created_at"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db_session)
):
    filters = []
    if status_filter != "all":
        filters.append(WinnerRequest.status == WinnerRequestStatus(status_filter))
    if search:
        filters.append(WinnerRequest.room_id.in_(
            select(Room.id).where(Room.room_code.icontains(search, autoescape=True))
        ))

    requests, pagination = await _paginate(
        db,
        WinnerRequest,
        filters,
        _order(WINNER_REQUEST_SORT, sort_by, sort_order),
        page,
        limit,
        WINNER_REQUEST_LOAD,
    )
    items = [WinnerRequestOut.model_validate(r) for r in requests]
    return ok(_page_payload(items, pagination), "Winner requests retrieved successfully")


@router.get("/winner-requests/{request_id}")
async def get_winner_request_details(
    request_id: UUID,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db_session)
):
    request = await _winner_request_or_404(db, request_id)

    room_transactions = await db.execute(
        select(Transaction)
        .where(Transaction.room_id == request.room_id)
        .options(*TX_LOAD)
        .order_by(Transaction.created_at.desc())
    )
    data = {
        "request": WinnerRequestOut.model_validate(request),
        "room_transactions": [TransactionOut.model_validate(tx) for tx in room_transactions.scalars()],
    }
    return ok(data, "Winner request details retrieved successfully")


@router.put("/winner-requests/{request_id}/approve")
async def approve_winner_request(
    request_id: UUID,
    request: Optional[ApproveWinnerRequestBody] = None,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db_session)
):
    """
    Aprueba el ganador declarado y acredita el premio.
    """
    request = request or ApproveWinnerRequestBody()
    await settlement.approve_winner_request(db, admin, request_id, request.notes)
    winner_request = await _winner_request_or_404(db, request_id)
    return ok(WinnerRequestOut.model_validate(winner_request), "Winner request approved successfully")


@router.put("/winner-requests/{request_id}/reject")
async def reject_winner_request(
    request_id: UUID,
    request: ReasonRequest,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db_session)
):
    await settlement.reject_winner_request(db, admin, request_id, request.reason)
    winner_request = await _winner_request_or_404(db, request_id)
    return ok(WinnerRequestOut.model_validate(winner_request), "Winner request rejected successfully")


# =============================================================================
# ENDPOINTS: RETIROS
# =============================================================================

WITHDRAWAL_SORT = {
    "created_at": WithdrawalRequest.requested_at,
    "requested_at": WithdrawalRequest.requested_at,
    "amount": WithdrawalRequest.amount,
    "processed_at": WithdrawalRequest.processed_at,
}


async def _withdrawal_or_404(db: AsyncSession, request_id: UUID) -> WithdrawalRequest:
    request = await _fetch_one(db, WithdrawalRequest, WithdrawalRequest.id == request_id, WITHDRAWAL_LOAD)
    if request is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Withdrawal request not found")
    return request


@router.get("/withdrawal-requests")
async def list_withdrawal_requests(
    search: Optional[str] = Query(None),
    status_filter: str = Query("all", alias="status", pattern=_enum_pattern(WithdrawalStatus)),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: str = Query("created_at"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db_session)
):
    """
    Cola de retiros. La búsqueda cubre UPI id, nombre y teléfono del usuario.
    """
    filters = []
    if status_filter != "all":
        filters.append(WithdrawalRequest.status == WithdrawalStatus(status_filter))
    if search:
        filters.append(or_(
            WithdrawalRequest.upi_id.icontains(search, autoescape=True),
            WithdrawalRequest.user_id.in_(
                select(User.id).where(or_(
                    User.name.icontains(search, autoescape=True),
                    User.phone.icontains(search, autoescape=True),
                ))
            ),
        ))

    requests, pagination = await _paginate(
        db,
        WithdrawalRequest,
        filters,
        _order(WITHDRAWAL_SORT, sort_by, sort_order),
        page,
        limit,
        WITHDRAWAL_LOAD,
    )
    items = [WithdrawalRequestOut.model_validate(r) for r in requests]
    return ok(_page_payload(items, pagination), "Withdrawal requests retrieved successfully")


@router.get("/withdrawal-requests/{request_id}")
async def get_withdrawal_request_details(
    request_id: UUID,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db_session)
):
    request = await _withdrawal_or_404(db, request_id)
    return ok(WithdrawalRequestOut.model_validate(request), "Withdrawal request details retrieved successfully")


@router.put("/withdrawal-requests/{request_id}/approve")
async def approve_withdrawal_request(
    request_id: UUID,
    request: Optional[ApproveWithdrawalRequestBody] = None,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db_session)
):
    """
    Marca el retiro como pagado. El saldo ya se debitó al crear la solicitud.
    """
    request = request or ApproveWithdrawalRequestBody()
    await settlement.approve_withdrawal(db, admin, request_id, request.notes, request.payment_proof)
    withdrawal = await _withdrawal_or_404(db, request_id)
    return ok(WithdrawalRequestOut.model_validate(withdrawal), "Withdrawal request approved successfully")


@router.put("/withdrawal-requests/{request_id}/reject")
async def reject_withdrawal_request(
    request_id: UUID,
    request: ReasonRequest,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db_session)
):
    """
    Rechaza el retiro y devuelve el monto al wallet del usuario.
    """
    await settlement.reject_withdrawal(db, admin, request_id, request.reason)
    withdrawal = await _withdrawal_or_404(db, request_id)
    return ok(
        WithdrawalRequestOut.model_validate(withdrawal),
        "Withdrawal request rejected and amount refunded to user"
    )
