"""
Domain Models Package
Export all domain entities
"""

from .entities import (
    # Enums
    ActorRole,
    ExecutionRule,
    ExecutionStatus,
    FeeType,
    PledgeSide,
    PledgeStatus,
    SessionMode,
    SessionStatus,

    # Entities
    Actor,
    AuditLogEntry,
    BatchResult,
    ExecutionRecord,
    Pledge,
    PledgeSession,
)

__all__ = [
    # Enums
    "ActorRole",
    "ExecutionRule",
    "ExecutionStatus",
    "FeeType",
    "PledgeSide",
    "PledgeStatus",
    "SessionMode",
    "SessionStatus",

    # Entities
    "Actor",
    "AuditLogEntry",
    "BatchResult",
    "ExecutionRecord",
    "Pledge",
    "PledgeSession",
]
