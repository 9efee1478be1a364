"""
Outbound synchronization: push handlers and the dispatcher that runs them
"""

from .handlers import OUTBOUND_HANDLERS, OutboundContext, PushOutcome
from .dispatcher import OutboundDispatcher

__all__ = ["OUTBOUND_HANDLERS", "OutboundContext", "PushOutcome", "OutboundDispatcher"]
