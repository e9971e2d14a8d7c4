"""
Database Models (SQLAlchemy ORM)
Execution records and audit log are insert-only - NO UPDATES, NO DELETES
"""

from sqlalchemy import (
    Column, Integer, String, Numeric, Date, DateTime,
    Boolean, ForeignKey, Text, Enum as SQLEnum, Index, JSON
)

from pledge_engine.domain.models import (
    ActorRole,
    ExecutionRule,
    ExecutionStatus,
    FeeType,
    PledgeSide,
    PledgeStatus,
    SessionMode,
    SessionStatus,
)
from pledge_engine.infrastructure.db.database import Base
from pledge_engine.utils.time import now_ist_naive


def _enum(enum_cls, name: str) -> SQLEnum:
    # Store lowercase values, portable across postgres/sqlite
    return SQLEnum(
        enum_cls,
        name=name,
        native_enum=False,
        length=32,
        values_callable=lambda e: [m.value for m in e],
    )


class PledgeSessionModel(Base):
    """One trading round for one instrument"""
    __tablename__ = "pledge_session"

    id = Column(Integer, primary_key=True, autoincrement=True)
    stock_symbol = Column(String(20), nullable=False, index=True)
    stock_name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)

    session_mode = Column(_enum(SessionMode, "session_mode"), nullable=False)
    execution_rule = Column(_enum(ExecutionRule, "execution_rule"), nullable=False)
    allow_amo = Column(Boolean, nullable=False, default=True)
    convenience_fee_type = Column(_enum(FeeType, "fee_type"), nullable=False, default=FeeType.FLAT)
    convenience_fee_amount = Column(Numeric(12, 2), nullable=False, default=0)
    min_qty = Column(Integer, nullable=False, default=1)
    max_qty = Column(Integer, nullable=True)
    capacity = Column(Integer, nullable=True)
    stock_price = Column(Numeric(12, 2), nullable=True)
    commission_rate = Column(Numeric(6, 3), nullable=True)

    session_start = Column(DateTime, nullable=True)
    session_end = Column(DateTime, nullable=True, index=True)
    status = Column(_enum(SessionStatus, "session_status"), nullable=False, default=SessionStatus.DRAFT, index=True)

    total_pledges = Column(Integer, nullable=False, default=0)
    total_pledge_value = Column(Numeric(14, 2), nullable=False, default=0)
    buy_pledges_count = Column(Integer, nullable=False, default=0)
    sell_pledges_count = Column(Integer, nullable=False, default=0)
    buy_pledges_value = Column(Numeric(14, 2), nullable=False, default=0)
    sell_pledges_value = Column(Numeric(14, 2), nullable=False, default=0)

    last_executed_at = Column(DateTime, nullable=True)
    admin_notes = Column(Text, nullable=True)
    is_deleted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=now_ist_naive)
    updated_at = Column(DateTime, nullable=False, default=now_ist_naive, onupdate=now_ist_naive)

    __table_args__ = (
        Index("ix_pledge_session_due", "status", "execution_rule", "session_end"),
    )


class PledgeModel(Base):
    """One user's commitment within a session"""
    __tablename__ = "pledge"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(Integer, ForeignKey("pledge_session.id"), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    demat_account_id = Column(String(64), nullable=False)
    stock_symbol = Column(String(20), nullable=False)
    side = Column(_enum(PledgeSide, "pledge_side"), nullable=False)
    qty = Column(Integer, nullable=False)
    price_target = Column(Numeric(12, 2), nullable=True)
    status = Column(_enum(PledgeStatus, "pledge_status"), nullable=False, default=PledgeStatus.PENDING)

    convenience_fee_amount = Column(Numeric(12, 2), nullable=False, default=0)
    convenience_fee_paid = Column(Boolean, nullable=False, default=False)
    admin_notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=now_ist_naive)
    updated_at = Column(DateTime, nullable=False, default=now_ist_naive, onupdate=now_ist_naive)

    __table_args__ = (
        Index("ix_pledge_by_session_status", "session_id", "status"),
    )


class PledgeExecutionRecordModel(Base):
    """Execution attempt on one pledge - AUDIT RECORD"""
    __tablename__ = "pledge_execution_record"

    id = Column(Integer, primary_key=True, autoincrement=True)
    pledge_id = Column(Integer, ForeignKey("pledge.id"), nullable=False, index=True)
    session_id = Column(Integer, ForeignKey("pledge_session.id"), nullable=False, index=True)
    user_id = Column(String(64), nullable=False)
    demat_account_id = Column(String(64), nullable=False)
    stock_symbol = Column(String(20), nullable=False)
    side = Column(_enum(PledgeSide, "pledge_side"), nullable=False)

    pledged_qty = Column(Integer, nullable=False)
    executed_qty = Column(Integer, nullable=False, default=0)
    executed_price = Column(Numeric(12, 2), nullable=True)
    total_execution_value = Column(Numeric(14, 2), nullable=False, default=0)
    platform_commission = Column(Numeric(12, 2), nullable=False, default=0)
    commission_rate = Column(Numeric(6, 3), nullable=False, default=0)
    net_amount = Column(Numeric(14, 2), nullable=False, default=0)

    status = Column(_enum(ExecutionStatus, "execution_status"), nullable=False)
    error_message = Column(Text, nullable=True)
    buy_execution_id = Column(Integer, ForeignKey("pledge_execution_record.id"), nullable=True)
    executed_at = Column(DateTime, nullable=False, default=now_ist_naive)
    settlement_date = Column(Date, nullable=True)

    __table_args__ = (
        Index("ix_execution_record_lookup", "session_id", "side", "status"),
        Index("ix_execution_record_executed_at", "executed_at"),
    )


class PledgeAuditLogModel(Base):
    """Action log (append-only)"""
    __tablename__ = "pledge_audit_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    actor_id = Column(String(64), nullable=False)
    actor_role = Column(_enum(ActorRole, "actor_role"), nullable=False)
    action = Column(String(50), nullable=False, index=True)
    target_type = Column(String(20), nullable=False)
    target_session_id = Column(Integer, nullable=True, index=True)
    target_pledge_id = Column(Integer, nullable=True, index=True)
    payload = Column(JSON, nullable=True)
    success = Column(Boolean, nullable=False)
    created_at = Column(DateTime, nullable=False, default=now_ist_naive)
