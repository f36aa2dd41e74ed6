"""
Execution layer.

- BidRegistry: per-bid state machine and attempt accounting
- ExecutionLoop: block-driven prepare -> simulate -> send
- Head sources: newHeads subscription or polling
- RevertClassifier: permanent vs retryable simulation reverts
"""

from ccabot.execution.bid_state_machine import (
    AttemptOutcome,
    BidRecord,
    BidRegistry,
    BidState,
    ExhaustReason,
    next_state,
)
from ccabot.execution.execution_loop import BidExecutor, ExecutionLoop, LoopState, StopReason
from ccabot.execution.head_source import BlockHead, PollingHeadSource, SubscriptionHeadSource
from ccabot.execution.revert_classifier import RevertClassifier

__all__ = [
    "AttemptOutcome",
    "BidRecord",
    "BidRegistry",
    "BidState",
    "ExhaustReason",
    "next_state",
    "BidExecutor",
    "ExecutionLoop",
    "LoopState",
    "StopReason",
    "BlockHead",
    "PollingHeadSource",
    "SubscriptionHeadSource",
    "RevertClassifier",
]
