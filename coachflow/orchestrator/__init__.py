"""Orchestrator module - Session state and admission control.

Provides:
- Session records and the repository contract
- CapacityGate: advisory admission control
- SessionStateMachine: lock-guarded lifecycle transitions
"""

from coachflow.orchestrator.capacity import CapacityCheck, CapacityGate
from coachflow.orchestrator.models import Session, SessionState
from coachflow.orchestrator.repository import InMemorySessionRepository, SessionRepository
from coachflow.orchestrator.state_machine import VALID_TRANSITIONS, SessionStateMachine

__all__ = [
    "CapacityCheck",
    "CapacityGate",
    "InMemorySessionRepository",
    "Session",
    "SessionRepository",
    "SessionState",
    "SessionStateMachine",
    "VALID_TRANSITIONS",
]
