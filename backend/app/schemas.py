"""
=============================================================================
LUDO LOOTO ADMIN - Schemas (Pydantic)
=============================================================================
Requests del panel y representaciones de respuesta de los modelos.
Los montos se serializan como string decimal ("150.00").
=============================================================================
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from ..models import (
    AdminRole,
    RoomStatus,
    TransactionStatus,
    TransactionType,
    WinnerRequestStatus,
    WithdrawalStatus,
)
from .security import SecurityConfig


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# =============================================================================
# REQUESTS
# =============================================================================

class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=50)
    password: str = Field(..., min_length=1)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=SecurityConfig.MIN_PASSWORD_LENGTH, max_length=128)


class BlockUserRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class BalanceUpdateRequest(BaseModel):
    """Ajuste manual: type = add | deduct."""
    amount: Decimal
    type: str
    reason: str = Field(..., min_length=3, max_length=500)


class DeclareWinnerRequest(BaseModel):
    winner_id: UUID
    reason: str = Field(..., min_length=3, max_length=500)


class ReasonRequest(BaseModel):
    """Motivo obligatorio para cancelar, rechazar o devolver."""
    reason: str = Field(..., min_length=3, max_length=500)


class ApproveWinnerRequestBody(BaseModel):
    notes: Optional[str] = Field(None, max_length=1000)


class ApproveWithdrawalRequestBody(BaseModel):
    notes: Optional[str] = Field(None, max_length=1000)
    payment_proof: Optional[str] = Field(None, max_length=500)


# =============================================================================
# REFERENCIAS (relaciones embebidas)
# =============================================================================

class UserRef(ORMModel):
    id: UUID
    name: str
    phone: str


class UserBalanceRef(UserRef):
    balance: Decimal


class AdminRef(ORMModel):
    id: UUID
    username: str


class RoomRef(ORMModel):
    id: UUID
    room_code: str
    game_type: str
    amount: Decimal
    status: RoomStatus


class RoomSummary(RoomRef):
    winner_id: Optional[UUID] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


class TransactionRef(ORMModel):
    id: UUID
    type: TransactionType
    amount: Decimal
    status: TransactionStatus


# =============================================================================
# RESPUESTAS
# =============================================================================

class AdminOut(ORMModel):
    id: UUID
    username: str
    role: AdminRole
    is_active: bool
    last_login: Optional[datetime] = None
    created_at: datetime


class UserOut(ORMModel):
    id: UUID
    name: str
    phone: str
    balance: Decimal
    total_games: int
    total_wins: int
    total_winnings: Decimal
    win_rate: int
    is_active: bool
    block_reason: Optional[str] = None
    blocked_at: Optional[datetime] = None
    created_at: datetime


class RoomPlayerOut(ORMModel):
    user: UserRef
    joined_at: datetime


class RoomOut(ORMModel):
    id: UUID
    room_code: str
    game_type: str
    amount: Decimal
    max_players: int
    current_players: int
    status: RoomStatus
    players: List[RoomPlayerOut]
    created_by: Optional[UserRef] = None
    winner: Optional[UserRef] = None
    winner_amount: Optional[Decimal] = None
    admin_declared_winner: bool
    admin_notes: Optional[str] = None
    cancel_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class TransactionOut(ORMModel):
    id: UUID
    type: TransactionType
    amount: Decimal
    status: TransactionStatus
    description: Optional[str] = None
    balance_before: Optional[Decimal] = None
    balance_after: Optional[Decimal] = None
    user: Optional[UserRef] = None
    room: Optional[RoomRef] = None
    processed_by: Optional[AdminRef] = None
    related_transaction_id: Optional[UUID] = None
    is_refunded: bool
    refunded_at: Optional[datetime] = None
    refund_reason: Optional[str] = None
    metadata: Optional[dict] = Field(None, validation_alias="extra_data")
    created_at: datetime


class WinnerRequestOut(ORMModel):
    id: UUID
    room: RoomOut
    declared_by: UserRef
    declared_winner: UserRef
    status: WinnerRequestStatus
    winner_amount: Decimal
    total_prize_pool: Decimal
    platform_fee: Decimal
    evidence: Optional[dict] = None
    admin_notes: Optional[str] = None
    processed_by: Optional[AdminRef] = None
    processed_at: Optional[datetime] = None
    created_at: datetime


class WithdrawalRequestOut(ORMModel):
    id: UUID
    user: UserBalanceRef
    transaction: Optional[TransactionRef] = None
    amount: Decimal
    upi_id: str
    status: WithdrawalStatus
    requested_at: datetime
    processed_at: Optional[datetime] = None
    processed_by: Optional[AdminRef] = None
    admin_notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    payment_proof: Optional[str] = None


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int
