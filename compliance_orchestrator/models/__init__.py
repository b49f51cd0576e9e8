"""
Domain models for the Compliance Orchestrator.
"""
from .case import Case, Installment, LockState, DeliveryChannel
from .assignment import Assignment, AssignmentStatus, RecoveryAgent, RecoveryHead
from .events import InboundEvent, LockAcknowledgement, parse_event

__all__ = [
    "Case",
    "Installment",
    "LockState",
    "DeliveryChannel",
    "Assignment",
    "AssignmentStatus",
    "RecoveryAgent",
    "RecoveryHead",
    "InboundEvent",
    "LockAcknowledgement",
    "parse_event",
]
