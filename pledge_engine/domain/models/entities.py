"""
Domain Models - Entities
Pure domain objects with no infrastructure dependencies
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional


class SessionStatus(str, Enum):
    """Pledge session lifecycle status"""
    DRAFT = "draft"
    ACTIVE = "active"
    CLOSED = "closed"
    EXECUTING = "executing"
    AWAITING_SELL_EXECUTION = "awaiting_sell_execution"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SessionMode(str, Enum):
    """Which sides a session trades"""
    BUY_ONLY = "buy_only"
    SELL_ONLY = "sell_only"
    BUY_SELL_CYCLE = "buy_sell_cycle"


class ExecutionRule(str, Enum):
    """When a session's pledges get executed"""
    IMMEDIATE = "immediate"
    SESSION_END = "session_end"
    MANUAL = "manual"


class FeeType(str, Enum):
    """Convenience fee type"""
    FLAT = "flat"
    PERCENTAGE = "percentage"


class PledgeSide(str, Enum):
    """Pledge side (also the execution phase)"""
    BUY = "buy"
    SELL = "sell"


class PledgeStatus(str, Enum):
    """Pledge status"""
    PENDING = "pending"
    READY_FOR_EXECUTION = "ready_for_execution"
    PAID = "paid"
    EXECUTED = "executed"
    FAILED = "failed"


class ExecutionStatus(str, Enum):
    """Execution record outcome"""
    COMPLETED = "completed"
    FAILED = "failed"


class ActorRole(str, Enum):
    ADMIN = "admin"
    SYSTEM = "system"
    USER = "user"


@dataclass(frozen=True)
class PledgeSession:
    """One time-boxed trading round for a single instrument"""
    id: int
    stock_symbol: str
    stock_name: str
    session_mode: SessionMode
    execution_rule: ExecutionRule
    status: SessionStatus
    session_start: Optional[datetime] = None
    session_end: Optional[datetime] = None
    description: Optional[str] = None
    allow_amo: bool = True
    convenience_fee_type: FeeType = FeeType.FLAT
    convenience_fee_amount: Decimal = Decimal("0")
    min_qty: int = 1
    max_qty: Optional[int] = None
    capacity: Optional[int] = None
    stock_price: Optional[Decimal] = None
    commission_rate: Optional[Decimal] = None

    # Rollups (derived from pledges, not authoritative)
    total_pledges: int = 0
    total_pledge_value: Decimal = Decimal("0")
    buy_pledges_count: int = 0
    sell_pledges_count: int = 0
    buy_pledges_value: Decimal = Decimal("0")
    sell_pledges_value: Decimal = Decimal("0")

    last_executed_at: Optional[datetime] = None
    admin_notes: Optional[str] = None
    is_deleted: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (SessionStatus.COMPLETED, SessionStatus.CANCELLED)

    def has_started(self, now: datetime) -> bool:
        return self.session_start is None or self.session_start <= now

    def has_ended(self, now: datetime) -> bool:
        """Check if the session window has closed"""
        return self.session_end is not None and self.session_end <= now


@dataclass(frozen=True)
class Pledge:
    """One investor's buy/sell commitment within a session"""
    id: int
    session_id: int
    user_id: str
    demat_account_id: str
    stock_symbol: str
    side: PledgeSide
    qty: int
    price_target: Optional[Decimal]
    status: PledgeStatus
    convenience_fee_amount: Decimal = Decimal("0")
    convenience_fee_paid: bool = False
    admin_notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def value(self) -> Decimal:
        return Decimal(self.qty) * (self.price_target or Decimal("0"))


@dataclass(frozen=True)
class ExecutionRecord:
    """Immutable ledger entry for one execution attempt - AUDIT RECORD"""
    id: int
    pledge_id: int
    session_id: int
    user_id: str
    demat_account_id: str
    stock_symbol: str
    side: PledgeSide
    pledged_qty: int
    executed_qty: int
    executed_price: Optional[Decimal]
    total_execution_value: Decimal
    platform_commission: Decimal
    commission_rate: Decimal
    net_amount: Decimal
    status: ExecutionStatus
    executed_at: datetime
    settlement_date: Optional[date] = None
    buy_execution_id: Optional[int] = None
    error_message: Optional[str] = None


@dataclass(frozen=True)
class AuditLogEntry:
    """Append-only action log entry"""
    id: int
    actor_id: str
    actor_role: ActorRole
    action: str
    target_type: str
    success: bool
    target_session_id: Optional[int] = None
    target_pledge_id: Optional[int] = None
    payload: dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class Actor:
    """Who triggered an operation"""
    id: str
    role: ActorRole = ActorRole.ADMIN


@dataclass(frozen=True)
class BatchResult:
    """Aggregate outcome of one execution phase"""
    session_id: int
    phase: PledgeSide
    eligible_count: int = 0
    success_count: int = 0
    fail_count: int = 0
    skipped_count: int = 0
    execution_ids: tuple[int, ...] = ()

    @property
    def attempted(self) -> int:
        return self.success_count + self.fail_count
