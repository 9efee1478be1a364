"""
Queue messages, transports and the sequential consumer base
"""

from .messages import (
    MessageKind,
    OutboundMessage,
    InboundTrigger,
    build_outbound_message,
    parse_outbound_message,
)
from .transport import Delivery, MessageQueue, InMemoryQueue, RedisQueue, dead_letter_channel
from .consumer import FailureAction, QueueConsumer

__all__ = [
    "MessageKind",
    "OutboundMessage",
    "InboundTrigger",
    "build_outbound_message",
    "parse_outbound_message",
    "Delivery",
    "MessageQueue",
    "InMemoryQueue",
    "RedisQueue",
    "dead_letter_channel",
    "FailureAction",
    "QueueConsumer",
]
