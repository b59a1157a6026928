"""
=============================================================================
LUDO LOOTO ADMIN - Liquidación y Conciliación de Saldos
=============================================================================
Flujos administrativos que mueven saldo:
- Aprobación / rechazo de solicitudes de ganador
- Re-declaración de ganador (reversión del premio anterior)
- Cancelación de salas con devolución de cuotas
- Ajustes manuales, devoluciones y retiros

Cada flujo se ejecuta en UNA transacción de base de datos: se validan todas
las precondiciones antes de tocar saldos y se confirma al final con commit.
Toda fila del ledger que mueve saldo guarda balance_before / balance_after.
=============================================================================
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..config import settings
from ..models import (
    CENT,
    CREDIT_TYPES,
    DEBIT_TYPES,
    REFUNDABLE_TYPES,
    Admin,
    Room,
    RoomStatus,
    Transaction,
    TransactionStatus,
    TransactionType,
    User,
    WinnerRequest,
    WinnerRequestStatus,
    WithdrawalRequest,
    WithdrawalStatus,
    to_money,
    utcnow,
)


logger = logging.getLogger(__name__)


class SettlementError(Exception):
    """Precondición de negocio no cumplida; se traduce a una respuesta HTTP."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


# =============================================================================
# CALCULADORA DE PREMIOS
# =============================================================================

@dataclass(frozen=True)
class PrizeBreakdown:
    total_prize_pool: Decimal
    platform_fee: Decimal
    winner_amount: Decimal

    def validate_balance_equation(self) -> bool:
        """Premio + comisión = pozo."""
        return self.winner_amount + self.platform_fee == self.total_prize_pool


class PrizeCalculator:
    """
    Calcula el reparto del pozo de una sala.

    Ejemplo sala de 50 con 2 jugadores y comisión del 10%:
        - total_prize_pool: 100.00
        - platform_fee: 10.00
        - winner_amount: 90.00
    """

    @classmethod
    def calculate(
        cls,
        entry_fee: Decimal,
        num_players: int,
        fee_percent: Optional[Decimal] = None
    ) -> PrizeBreakdown:
        if num_players < 1:
            raise ValueError("A room needs at least one player to compute a prize")
        percent = settings.PLATFORM_FEE_PERCENT if fee_percent is None else Decimal(str(fee_percent))
        if percent < 0 or percent > 100:
            raise ValueError(f"Platform fee percent out of range: {percent}")

        pool = to_money(Decimal(str(entry_fee)) * num_players)
        fee = (pool * percent / Decimal("100")).quantize(CENT, rounding=ROUND_HALF_UP)
        breakdown = PrizeBreakdown(
            total_prize_pool=pool,
            platform_fee=fee,
            winner_amount=pool - fee,
        )
        if not breakdown.validate_balance_equation():
            raise ValueError(f"Balance equation failed for pool {pool}")
        return breakdown


# =============================================================================
# LEDGER
# =============================================================================

def post_ledger_entry(
    user: User,
    tx_type: TransactionType,
    amount: Decimal,
    *,
    description: str,
    admin: Optional[Admin] = None,
    room_id: Optional[UUID] = None,
    related_transaction_id: Optional[UUID] = None,
    status: TransactionStatus = TransactionStatus.COMPLETED,
    extra_data: Optional[dict] = None,
) -> Transaction:
    """
    Aplica un movimiento al saldo del usuario y devuelve la fila del ledger
    con el snapshot antes/después. No hace flush ni commit.
    """
    amount = to_money(amount)
    if amount <= 0:
        raise SettlementError(400, "Amount must be a positive number")

    balance_before = to_money(user.balance)
    if tx_type in CREDIT_TYPES:
        balance_after = balance_before + amount
    elif tx_type in DEBIT_TYPES:
        if balance_before < amount:
            raise SettlementError(400, "Insufficient balance")
        balance_after = balance_before - amount
    else:
        raise ValueError(f"{tx_type} does not move a user balance")

    user.balance = balance_after
    return Transaction(
        user_id=user.id,
        room_id=room_id,
        type=tx_type,
        amount=amount,
        status=status,
        description=description,
        balance_before=balance_before,
        balance_after=balance_after,
        processed_by_id=admin.id if admin else None,
        related_transaction_id=related_transaction_id,
        extra_data=extra_data,
    )


async def _lock_user(db: AsyncSession, user_id: Optional[UUID]) -> Optional[User]:
    if user_id is None:
        return None
    return await db.get(User, user_id, with_for_update=True)


async def _lock_room(db: AsyncSession, *criteria) -> Optional[Room]:
    result = await db.execute(
        select(Room)
        .where(*criteria)
        .options(selectinload(Room.players))
        .with_for_update()
    )
    return result.scalar_one_or_none()


def _credit_win(winner: User, prize: Decimal) -> None:
    winner.total_wins += 1
    winner.total_winnings = to_money(winner.total_winnings) + prize


def _reverse_win(previous: User, prize: Decimal) -> None:
    previous.total_wins = max(previous.total_wins - 1, 0)
    previous.total_winnings = max(to_money(previous.total_winnings) - prize, Decimal("0.00"))


# =============================================================================
# AJUSTES DE SALDO
# =============================================================================

async def adjust_user_balance(
    db: AsyncSession,
    admin: Admin,
    user_id: UUID,
    amount: Decimal,
    adjustment: str,
    reason: str
) -> Tuple[User, Decimal, Transaction]:
    """Crédito o débito manual. Devuelve (usuario, saldo anterior, transacción)."""
    user = await _lock_user(db, user_id)
    if user is None:
        raise SettlementError(404, "User not found")

    if amount is None or amount <= 0:
        raise SettlementError(400, "Amount must be a positive number")

    if adjustment == "add":
        tx_type = TransactionType.ADMIN_CREDIT
    elif adjustment == "deduct":
        tx_type = TransactionType.ADMIN_DEBIT
        if to_money(user.balance) < to_money(amount):
            raise SettlementError(400, "Insufficient balance to deduct")
    else:
        raise SettlementError(400, 'Invalid type. Must be "add" or "deduct"')

    old_balance = to_money(user.balance)
    tx = post_ledger_entry(
        user,
        tx_type,
        amount,
        description=reason,
        admin=admin,
        extra_data={
            "admin_action": True,
            "admin_id": str(admin.id),
            "admin_username": admin.username,
        },
    )
    db.add(tx)
    await db.commit()

    logger.info(
        "[SETTLEMENT] Ajuste %s de %s para %s: %s -> %s (admin %s)",
        adjustment, tx.amount, user.id, old_balance, user.balance, admin.username
    )
    return user, old_balance, tx


async def refund_transaction(
    db: AsyncSession,
    admin: Admin,
    transaction_id: UUID,
    reason: str
) -> Tuple[Transaction, Transaction]:
    """Devuelve un débito completado. Devuelve (original, devolución)."""
    original = await db.get(Transaction, transaction_id, with_for_update=True)
    if original is None:
        raise SettlementError(404, "Transaction not found")

    if original.status != TransactionStatus.COMPLETED:
        raise SettlementError(400, "Can only refund completed transactions")
    if original.type == TransactionType.REFUND:
        raise SettlementError(400, "Cannot refund a refund transaction")
    if original.is_refunded:
        raise SettlementError(400, "Transaction has already been refunded")
    if original.type not in REFUNDABLE_TYPES:
        raise SettlementError(400, "Only debit transactions can be refunded")

    user = await _lock_user(db, original.user_id)
    if user is None:
        raise SettlementError(404, "User not found")

    refund = post_ledger_entry(
        user,
        TransactionType.REFUND,
        original.amount,
        description=f"Refund for transaction {original.id}: {reason}",
        admin=admin,
        room_id=original.room_id,
        related_transaction_id=original.id,
    )
    db.add(refund)

    original.is_refunded = True
    original.refunded_at = utcnow()
    original.refunded_by_id = admin.id
    original.refund_reason = reason
    await db.commit()

    logger.info(
        "[SETTLEMENT] Devolución de %s a %s por transacción %s", refund.amount, user.id, original.id
    )
    return original, refund


# =============================================================================
# SALAS
# =============================================================================

async def declare_correct_winner(
    db: AsyncSession,
    admin: Admin,
    room_code: str,
    winner_id: UUID,
    reason: str
) -> Room:
    """
    Corrige el ganador de una sala completada.

    PROCESO ATÓMICO:
    1. Valida sala completada y que el nuevo ganador sea jugador
    2. Revierte el premio del ganador anterior (ADMIN_REVERSAL)
    3. Acredita el premio al nuevo ganador (GAME_WIN)
    4. Actualiza la sala con la declaración del admin
    """
    room = await _lock_room(db, Room.room_code == room_code)
    if room is None:
        raise SettlementError(404, "Room not found")

    if room.status != RoomStatus.COMPLETED:
        raise SettlementError(400, "Can only declare winner for completed rooms")

    winner = await _lock_user(db, winner_id)
    if winner is None:
        raise SettlementError(404, "Winner not found")

    if not room.has_player(winner.id):
        raise SettlementError(400, "Winner must be a player in the room")

    if room.winner_id == winner.id:
        raise SettlementError(400, "User is already the declared winner of this room")

    if room.winner_amount is not None:
        prize = to_money(room.winner_amount)
    else:
        prize = PrizeCalculator.calculate(room.amount, len(room.players)).winner_amount

    previous = await _lock_user(db, room.winner_id)
    if previous is not None and to_money(previous.balance) < prize:
        raise SettlementError(400, "Previous winner balance is insufficient to reverse the payout")

    if previous is not None:
        db.add(post_ledger_entry(
            previous,
            TransactionType.ADMIN_REVERSAL,
            prize,
            description=f"Winner declaration reversed by admin: {reason}",
            admin=admin,
            room_id=room.id,
        ))
        _reverse_win(previous, prize)
    elif room.winner_id is not None:
        logger.warning("[SETTLEMENT] Ganador anterior %s ya no existe; sin reversión", room.winner_id)

    db.add(post_ledger_entry(
        winner,
        TransactionType.GAME_WIN,
        prize,
        description=f"Correct winner declared by admin: {reason}",
        admin=admin,
        room_id=room.id,
    ))
    _credit_win(winner, prize)

    room.winner_id = winner.id
    room.winner_amount = prize
    room.admin_declared_winner = True
    room.admin_notes = reason
    room.processed_by_id = admin.id
    if room.completed_at is None:
        room.completed_at = utcnow()
    await db.commit()

    logger.info(
        "[SETTLEMENT] Sala %s: ganador %s -> %s, premio %s (admin %s)",
        room.room_code, previous.id if previous else None, winner.id, prize, admin.username
    )
    return room


async def cancel_room(
    db: AsyncSession,
    admin: Admin,
    room_code: str,
    reason: str
) -> Tuple[Room, List[Transaction]]:
    """Cancela una sala no finalizada devolviendo la cuota a cada jugador."""
    room = await _lock_room(db, Room.room_code == room_code)
    if room is None:
        raise SettlementError(404, "Room not found")

    if room.status == RoomStatus.CANCELLED:
        raise SettlementError(400, "Room is already cancelled")
    if room.status == RoomStatus.COMPLETED:
        raise SettlementError(400, "Cannot cancel completed room")

    refunds: List[Transaction] = []
    for player in room.players:
        user = await _lock_user(db, player.user_id)
        if user is None:
            continue
        refund = post_ledger_entry(
            user,
            TransactionType.REFUND,
            room.amount,
            description=f"Room cancelled by admin: {reason}",
            admin=admin,
            room_id=room.id,
        )
        db.add(refund)
        refunds.append(refund)

    # Las disputas pendientes de una sala cancelada ya no pueden aprobarse
    pending = await db.execute(
        select(WinnerRequest)
        .where(
            WinnerRequest.room_id == room.id,
            WinnerRequest.status == WinnerRequestStatus.PENDING
        )
        .with_for_update()
    )
    now = utcnow()
    for request in pending.scalars():
        request.status = WinnerRequestStatus.REJECTED
        request.admin_notes = f"Room cancelled: {reason}"
        request.processed_by_id = admin.id
        request.processed_at = now

    room.status = RoomStatus.CANCELLED
    room.cancel_reason = reason
    room.cancelled_by_id = admin.id
    room.cancelled_at = now
    await db.commit()

    logger.info(
        "[SETTLEMENT] Sala %s cancelada: %d devoluciones de %s (admin %s)",
        room.room_code, len(refunds), room.amount, admin.username
    )
    return room, refunds


# =============================================================================
# SOLICITUDES DE GANADOR
# =============================================================================

async def approve_winner_request(
    db: AsyncSession,
    admin: Admin,
    request_id: UUID,
    notes: Optional[str] = None
) -> WinnerRequest:
    """
    Aprueba una disputa: completa la sala, acredita el premio al ganador y
    registra la comisión de la plataforma.
    """
    request = await db.get(WinnerRequest, request_id, with_for_update=True)
    if request is None:
        raise SettlementError(404, "Winner request not found")

    if request.status != WinnerRequestStatus.PENDING:
        raise SettlementError(400, "Request has already been processed")

    room = await _lock_room(db, Room.id == request.room_id)
    if room is None:
        raise SettlementError(404, "Room not found")

    if room.status == RoomStatus.CANCELLED:
        raise SettlementError(400, "Cannot approve a winner for a cancelled room")
    if room.status == RoomStatus.COMPLETED and room.winner_id is not None:
        raise SettlementError(400, "Room already has a settled winner")

    winner = await _lock_user(db, request.declared_winner_id)
    if winner is None:
        raise SettlementError(404, "Winner not found")

    if not room.has_player(winner.id):
        raise SettlementError(400, "Declared winner is not a player in the room")

    breakdown = PrizeBreakdown(
        total_prize_pool=to_money(request.total_prize_pool),
        platform_fee=to_money(request.platform_fee),
        winner_amount=to_money(request.winner_amount),
    )
    if not breakdown.validate_balance_equation():
        raise SettlementError(400, "Prize breakdown does not add up to the prize pool")

    now = utcnow()
    request.status = WinnerRequestStatus.APPROVED
    request.admin_notes = notes
    request.processed_by_id = admin.id
    request.processed_at = now

    room.status = RoomStatus.COMPLETED
    room.winner_id = winner.id
    room.winner_amount = breakdown.winner_amount
    room.completed_at = now

    if breakdown.winner_amount > 0:
        db.add(post_ledger_entry(
            winner,
            TransactionType.GAME_WIN,
            breakdown.winner_amount,
            description=f"Game win - Room {room.room_code}",
            admin=admin,
            room_id=room.id,
        ))
    _credit_win(winner, breakdown.winner_amount)

    if breakdown.platform_fee > 0:
        db.add(Transaction(
            user_id=None,
            room_id=room.id,
            type=TransactionType.PLATFORM_FEE,
            amount=breakdown.platform_fee,
            status=TransactionStatus.COMPLETED,
            description=f"Platform fee - Room {room.room_code}",
            processed_by_id=admin.id,
        ))
    await db.commit()

    logger.info(
        "[SETTLEMENT] Solicitud %s aprobada: sala %s, ganador %s +%s, comisión %s",
        request.id, room.room_code, winner.id, breakdown.winner_amount, breakdown.platform_fee
    )
    return request


async def reject_winner_request(
    db: AsyncSession,
    admin: Admin,
    request_id: UUID,
    reason: str
) -> WinnerRequest:
    """Rechaza una disputa; una sala aún sin liquidar vuelve a PLAYING."""
    request = await db.get(WinnerRequest, request_id, with_for_update=True)
    if request is None:
        raise SettlementError(404, "Winner request not found")

    if request.status != WinnerRequestStatus.PENDING:
        raise SettlementError(400, "Request has already been processed")

    room = await _lock_room(db, Room.id == request.room_id)
    if room is None:
        raise SettlementError(404, "Room not found")

    request.status = WinnerRequestStatus.REJECTED
    request.admin_notes = reason
    request.processed_by_id = admin.id
    request.processed_at = utcnow()

    if room.status not in (RoomStatus.COMPLETED, RoomStatus.CANCELLED):
        room.status = RoomStatus.PLAYING
        room.winner_id = None
        room.winner_amount = None
    await db.commit()

    logger.info("[SETTLEMENT] Solicitud %s rechazada (sala %s)", request.id, room.room_code)
    return request


# =============================================================================
# RETIROS
# =============================================================================

async def approve_withdrawal(
    db: AsyncSession,
    admin: Admin,
    request_id: UUID,
    notes: Optional[str] = None,
    payment_proof: Optional[str] = None
) -> WithdrawalRequest:
    """Confirma un retiro ya pagado. El saldo se debitó al crear la solicitud."""
    request = await db.get(WithdrawalRequest, request_id, with_for_update=True)
    if request is None:
        raise SettlementError(404, "Withdrawal request not found")

    if request.status != WithdrawalStatus.PENDING:
        raise SettlementError(400, "Request has already been processed")

    request.status = WithdrawalStatus.APPROVED
    request.admin_notes = notes
    request.payment_proof = payment_proof
    request.processed_by_id = admin.id
    request.processed_at = utcnow()

    if request.transaction_id is not None:
        tx = await db.get(Transaction, request.transaction_id, with_for_update=True)
        if tx is not None:
            tx.status = TransactionStatus.COMPLETED
            tx.processed_by_id = admin.id
    await db.commit()

    logger.info(
        "[SETTLEMENT] Retiro %s aprobado: %s a %s", request.id, request.amount, request.upi_id
    )
    return request


async def reject_withdrawal(
    db: AsyncSession,
    admin: Admin,
    request_id: UUID,
    reason: str
) -> Tuple[WithdrawalRequest, Transaction]:
    """Rechaza un retiro devolviendo el monto al saldo del usuario."""
    request = await db.get(WithdrawalRequest, request_id, with_for_update=True)
    if request is None:
        raise SettlementError(404, "Withdrawal request not found")

    if request.status != WithdrawalStatus.PENDING:
        raise SettlementError(400, "Request has already been processed")

    user = await _lock_user(db, request.user_id)
    if user is None:
        raise SettlementError(404, "User not found")

    refund = post_ledger_entry(
        user,
        TransactionType.REFUND,
        request.amount,
        description=f"Withdrawal request rejected: {reason}",
        admin=admin,
        related_transaction_id=request.transaction_id,
    )
    db.add(refund)

    if request.transaction_id is not None:
        tx = await db.get(Transaction, request.transaction_id, with_for_update=True)
        if tx is not None:
            tx.status = TransactionStatus.CANCELLED
            tx.processed_by_id = admin.id

    request.status = WithdrawalStatus.REJECTED
    request.rejection_reason = reason
    request.processed_by_id = admin.id
    request.processed_at = utcnow()
    await db.commit()

    logger.info(
        "[SETTLEMENT] Retiro %s rechazado: %s devuelto a %s", request.id, request.amount, user.id
    )
    return request, refund
