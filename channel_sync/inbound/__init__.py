"""
Inbound synchronization: pull handlers, the sync runner and its queue worker
"""

from .handlers import INBOUND_STAGES, InboundContext, InboundStage, PullOutcome
from .runner import InboundSyncRunner, InboundWorker

__all__ = ["INBOUND_STAGES", "InboundContext", "InboundStage", "PullOutcome", "InboundSyncRunner", "InboundWorker"]
