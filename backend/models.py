"""
=============================================================================
LUDO LOOTO ADMIN - Modelos de Base de Datos (SQLAlchemy)
=============================================================================
Usuarios, salas de juego, ledger de transacciones y solicitudes pendientes
de revisión administrativa (ganadores y retiros).

Principios de Diseño:
- Los montos del ledger son siempre positivos; el tipo determina la dirección
- Toda transacción que mueve saldo guarda balance_before / balance_after
- Los estados avanzan en un solo sentido salvo reversión explícita del admin
=============================================================================
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum as PyEnum
from typing import List, Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


JSONType = JSON().with_variant(JSONB(), "postgresql")

# Precisión monetaria: Numeric(12, 2), rupias con paisa
Money = Numeric(12, 2)
CENT = Decimal("0.01")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite devuelve datetimes naive; se interpretan como UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT)


# =============================================================================
# ENUMERACIONES DEL SISTEMA
# =============================================================================

class AdminRole(str, PyEnum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    MODERATOR = "moderator"


class RoomStatus(str, PyEnum):
    """Ciclo de vida de una sala: waiting → playing → completed | cancelled."""
    WAITING = "waiting"
    PLAYING = "playing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TransactionType(str, PyEnum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    GAME_ENTRY = "game_entry"
    GAME_WIN = "game_win"
    REFUND = "refund"
    PLATFORM_FEE = "platform_fee"      # Ingreso de la plataforma, sin usuario
    ADMIN_CREDIT = "admin_credit"
    ADMIN_DEBIT = "admin_debit"
    ADMIN_REVERSAL = "admin_reversal"  # Reversión de un premio mal asignado


CREDIT_TYPES = frozenset({
    TransactionType.DEPOSIT,
    TransactionType.GAME_WIN,
    TransactionType.REFUND,
    TransactionType.ADMIN_CREDIT,
})

DEBIT_TYPES = frozenset({
    TransactionType.WITHDRAWAL,
    TransactionType.GAME_ENTRY,
    TransactionType.ADMIN_DEBIT,
    TransactionType.ADMIN_REVERSAL,
})

# Débitos que el admin puede devolver al usuario
REFUNDABLE_TYPES = frozenset({
    TransactionType.WITHDRAWAL,
    TransactionType.GAME_ENTRY,
    TransactionType.ADMIN_DEBIT,
})


class TransactionStatus(str, PyEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class WinnerRequestStatus(str, PyEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class WithdrawalStatus(str, PyEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


# =============================================================================
# BASE DECLARATIVA
# =============================================================================

class Base(AsyncAttrs, DeclarativeBase):
    """Clase base para todos los modelos con soporte async."""
    pass


# =============================================================================
# TABLA: ADMINS
# =============================================================================

class Admin(Base):
    """Cuenta del panel de administración con bloqueo por intentos fallidos."""
    __tablename__ = "admins"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    username: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[AdminRole] = mapped_column(Enum(AdminRole), default=AdminRole.ADMIN, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    login_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    lock_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_login: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False
    )

    @property
    def is_locked(self) -> bool:
        lock_until = as_utc(self.lock_until)
        return lock_until is not None and lock_until > utcnow()

    def register_failed_login(self, max_attempts: int, lock_minutes: int) -> None:
        """Cuenta un intento fallido; al llegar al máximo bloquea la cuenta."""
        lock_until = as_utc(self.lock_until)
        if lock_until is not None and lock_until <= utcnow():
            # El bloqueo anterior expiró: se empieza a contar de nuevo
            self.login_attempts = 0
            self.lock_until = None

        self.login_attempts += 1
        if self.login_attempts >= max_attempts and not self.is_locked:
            self.lock_until = utcnow() + timedelta(minutes=lock_minutes)

    def reset_login_attempts(self) -> None:
        self.login_attempts = 0
        self.lock_until = None


# =============================================================================
# TABLA: USERS (Jugadores)
# =============================================================================

class User(Base):
    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    phone: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)

    balance: Mapped[Decimal] = mapped_column(Money, default=Decimal("0.00"), nullable=False)

    # Contadores de juego
    total_games: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_wins: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_winnings: Mapped[Decimal] = mapped_column(Money, default=Decimal("0.00"), nullable=False)

    # Bloqueo administrativo
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    block_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    blocked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    blocked_by_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("admins.id", ondelete="SET NULL"),
        nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False
    )

    __table_args__ = (
        Index("idx_users_phone", "phone"),
        Index("idx_users_is_active", "is_active"),
        Index("idx_users_created_at", "created_at"),
        CheckConstraint("balance >= 0", name="check_positive_balance"),
    )

    @property
    def win_rate(self) -> int:
        """Porcentaje de victorias redondeado."""
        if not self.total_games:
            return 0
        return round(self.total_wins / self.total_games * 100)


# =============================================================================
# TABLA: ROOMS (Salas de juego)
# =============================================================================

class Room(Base):
    """
    Una sesión de juego con cuota de entrada, jugadores y un resultado final
    (ganador o cancelación).
    """
    __tablename__ = "rooms"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Código público de la sala (el que ven jugadores y admins)
    room_code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    game_type: Mapped[str] = mapped_column(String(30), default="classic", nullable=False)

    # Cuota de entrada por jugador
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    max_players: Mapped[int] = mapped_column(Integer, default=2, nullable=False)

    status: Mapped[RoomStatus] = mapped_column(
        Enum(RoomStatus),
        default=RoomStatus.WAITING,
        nullable=False
    )

    created_by_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )

    # Resultado
    winner_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )
    winner_amount: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    admin_declared_winner: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processed_by_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("admins.id", ondelete="SET NULL"),
        nullable=True
    )

    # Cancelación
    cancel_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancelled_by_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("admins.id", ondelete="SET NULL"),
        nullable=True
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relaciones
    players: Mapped[List["RoomPlayer"]] = relationship(
        back_populates="room",
        cascade="all, delete-orphan",
        order_by="RoomPlayer.joined_at"
    )
    created_by: Mapped[Optional["User"]] = relationship(foreign_keys=[created_by_id])
    winner: Mapped[Optional["User"]] = relationship(foreign_keys=[winner_id])

    __table_args__ = (
        Index("idx_rooms_status", "status"),
        Index("idx_rooms_game_type", "game_type"),
        Index("idx_rooms_created_at", "created_at"),
        CheckConstraint("amount > 0", name="check_room_amount_positive"),
    )

    @property
    def current_players(self) -> int:
        return len(self.players)

    def has_player(self, user_id: UUID) -> bool:
        """Requiere `players` cargado."""
        return any(player.user_id == user_id for player in self.players)


class RoomPlayer(Base):
    """Relación entre usuarios y salas."""
    __tablename__ = "room_players"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    room_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("rooms.id", ondelete="CASCADE"),
        nullable=False
    )
    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False
    )
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False
    )

    room: Mapped["Room"] = relationship(back_populates="players")
    user: Mapped["User"] = relationship()

    __table_args__ = (
        UniqueConstraint("room_id", "user_id", name="unique_room_player"),
        Index("idx_room_player_user", "user_id"),
    )


# =============================================================================
# TABLA: TRANSACTIONS (Ledger)
# =============================================================================

class Transaction(Base):
    """
    Libro mayor de movimientos de saldo.

    El monto siempre es positivo: los tipos de CREDIT_TYPES suman al saldo y
    los de DEBIT_TYPES restan. Las filas PLATFORM_FEE no tienen usuario.
    """
    __tablename__ = "transactions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    user_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=True
    )
    room_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("rooms.id", ondelete="SET NULL"),
        nullable=True
    )

    type: Mapped[TransactionType] = mapped_column(Enum(TransactionType), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    status: Mapped[TransactionStatus] = mapped_column(
        Enum(TransactionStatus),
        default=TransactionStatus.PENDING,
        nullable=False
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Snapshot del saldo (auditoría)
    balance_before: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    balance_after: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)

    processed_by_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("admins.id", ondelete="SET NULL"),
        nullable=True
    )
    related_transaction_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("transactions.id", ondelete="SET NULL"),
        nullable=True
    )

    # Devolución
    is_refunded: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_by_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("admins.id", ondelete="SET NULL"),
        nullable=True
    )
    refund_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # "metadata" está reservado por SQLAlchemy en el modelo declarativo
    extra_data: Mapped[Optional[dict]] = mapped_column("metadata", JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False
    )

    # Relaciones
    user: Mapped[Optional["User"]] = relationship(foreign_keys=[user_id])
    room: Mapped[Optional["Room"]] = relationship(foreign_keys=[room_id])
    processed_by: Mapped[Optional["Admin"]] = relationship(foreign_keys=[processed_by_id])

    __table_args__ = (
        Index("idx_tx_user_id", "user_id"),
        Index("idx_tx_room_id", "room_id"),
        Index("idx_tx_type", "type"),
        Index("idx_tx_status", "status"),
        Index("idx_tx_created_at", "created_at"),
        CheckConstraint("amount >= 0", name="check_positive_amount"),
    )


# =============================================================================
# TABLA: WINNER_REQUESTS (Disputas de ganador)
# =============================================================================

class WinnerRequest(Base):
    """
    Ganador auto-declarado de una sala que espera confirmación del admin
    antes de pagar el premio.
    """
    __tablename__ = "winner_requests"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    room_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("rooms.id", ondelete="CASCADE"),
        nullable=False
    )
    declared_by_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False
    )
    declared_winner_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False
    )

    status: Mapped[WinnerRequestStatus] = mapped_column(
        Enum(WinnerRequestStatus),
        default=WinnerRequestStatus.PENDING,
        nullable=False
    )

    # Desglose del premio: winner_amount + platform_fee == total_prize_pool
    winner_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    total_prize_pool: Mapped[Decimal] = mapped_column(Money, nullable=False)
    platform_fee: Mapped[Decimal] = mapped_column(Money, default=Decimal("0.00"), nullable=False)

    # {"screenshots": [...], "description": "..."}
    evidence: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processed_by_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("admins.id", ondelete="SET NULL"),
        nullable=True
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False
    )

    room: Mapped["Room"] = relationship()
    declared_by: Mapped["User"] = relationship(foreign_keys=[declared_by_id])
    declared_winner: Mapped["User"] = relationship(foreign_keys=[declared_winner_id])
    processed_by: Mapped[Optional["Admin"]] = relationship(foreign_keys=[processed_by_id])

    __table_args__ = (
        Index("idx_winner_req_status", "status"),
        Index("idx_winner_req_room", "room_id"),
        Index("idx_winner_req_created", "created_at"),
        CheckConstraint("winner_amount >= 0", name="check_winner_amount_positive"),
        CheckConstraint("platform_fee >= 0", name="check_platform_fee_positive"),
    )


# =============================================================================
# TABLA: WITHDRAWAL_REQUESTS (Retiros vía UPI)
# =============================================================================

class WithdrawalRequest(Base):
    """
    Solicitud de retiro. El saldo se debita al crear la solicitud (con una
    transacción WITHDRAWAL en estado PENDING); el admin la aprueba tras pagar
    o la rechaza devolviendo el monto.
    """
    __tablename__ = "withdrawal_requests"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False
    )
    transaction_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("transactions.id", ondelete="SET NULL"),
        nullable=True
    )

    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    upi_id: Mapped[str] = mapped_column(String(100), nullable=False)

    status: Mapped[WithdrawalStatus] = mapped_column(
        Enum(WithdrawalStatus),
        default=WithdrawalStatus.PENDING,
        nullable=False
    )

    requested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    processed_by_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("admins.id", ondelete="SET NULL"),
        nullable=True
    )
    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    payment_proof: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    user: Mapped["User"] = relationship()
    transaction: Mapped[Optional["Transaction"]] = relationship()
    processed_by: Mapped[Optional["Admin"]] = relationship(foreign_keys=[processed_by_id])

    __table_args__ = (
        Index("idx_withdrawal_user", "user_id"),
        Index("idx_withdrawal_status", "status"),
        Index("idx_withdrawal_requested", "requested_at"),
        CheckConstraint("amount > 0", name="check_withdrawal_amount_positive"),
    )
