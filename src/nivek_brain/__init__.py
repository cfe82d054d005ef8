"""Conversational core for the NIVEK embodied companion."""

from .companion import Companion
from .models import Message, MessageRole, MetricsSnapshot, Session, TurnState
from .session import SessionStateMachine

__all__ = [
    "Companion",
    "Message",
    "MessageRole",
    "MetricsSnapshot",
    "Session",
    "SessionStateMachine",
    "TurnState",
]
