"""
End-of-run bid summary.

Built from the frozen registry after the execution loop exits: one line per
bid (state, attempts, tx hash or last error) plus totals. Logged as a
structured event and persisted as pretty JSON for the operator.
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from ccabot.core.json_utils import dumps_bytes
from ccabot.execution.bid_state_machine import BidRegistry, BidState
from ccabot.infra.logging_cfg import log_event

log = logging.getLogger("ccabot")

# Stop reasons that mean the run ended before every bid got its chance.
ABNORMAL_STOPS = frozenset({"shutdown_requested", "head_stream_ended", "head_stream_error"})


@dataclass(frozen=True)
class BidOutcome:
    bid_id: int
    state: str
    attempts: int
    owner: Optional[str]
    amount: int
    requested_price: Optional[int]
    aligned_price: Optional[int]
    tx_hash: Optional[str] = None
    last_error: Optional[str] = None
    exhaust_reason: Optional[str] = None
    receipt_status: Optional[int] = None


@dataclass
class BidSummary:
    outcomes: List[BidOutcome] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    def _count(self, state: BidState) -> int:
        return sum(1 for o in self.outcomes if o.state == state.name)

    @property
    def submitted(self) -> int:
        return self._count(BidState.SUBMITTED)

    @property
    def exhausted(self) -> int:
        return self._count(BidState.EXHAUSTED)

    @property
    def pending(self) -> int:
        return self._count(BidState.PENDING)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "submitted": self.submitted,
            "exhausted": self.exhausted,
            "pending": self.pending,
            "bids": [asdict(o) for o in self.outcomes],
        }


def build_summary(registry: BidRegistry) -> BidSummary:
    outcomes = []
    for record in registry:
        planned = record.planned
        outcomes.append(
            BidOutcome(
                bid_id=record.bid_id,
                state=record.state.name,
                attempts=record.attempts,
                owner=planned.owner if planned else record.spec.owner,
                amount=record.spec.amount,
                requested_price=planned.requested_price if planned else record.spec.max_price,
                aligned_price=planned.aligned_price if planned else None,
                tx_hash=record.tx_hash,
                last_error=record.last_error,
                exhaust_reason=record.exhaust_reason.value if record.exhaust_reason else None,
                receipt_status=record.receipt_status,
            )
        )
    return BidSummary(outcomes=outcomes)


def log_summary(summary: BidSummary, stop_reason: Optional[str] = None) -> None:
    for outcome in summary.outcomes:
        level = logging.INFO if outcome.state == BidState.SUBMITTED.name else logging.WARNING
        log_event(log, "bid_outcome", level=level, **asdict(outcome))

    with_pending = summary.pending > 0 and stop_reason in ABNORMAL_STOPS
    level = logging.WARNING if with_pending or summary.exhausted else logging.INFO
    log_event(
        log,
        "bid_summary",
        level=level,
        stop_reason=stop_reason,
        stopped_with_pending=with_pending,
        total=summary.total,
        submitted=summary.submitted,
        exhausted=summary.exhausted,
        pending=summary.pending,
    )


def persist_summary(
    summary: BidSummary,
    stop_reason: Optional[str],
    directory: str | Path,
    now: Optional[datetime] = None,
) -> Path:
    """
    Write bid-summary-<UTC timestamp>.json into directory and return its path.

    The file is written to a temp name and renamed, so a reader never sees a
    partial summary.
    """
    now = now or datetime.now(timezone.utc)
    out_dir = Path(directory)
    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / f"bid-summary-{now.strftime('%Y%m%dT%H%M%SZ')}.json"

    payload = {"generated_at": now.isoformat(), "stop_reason": stop_reason, **summary.to_dict()}
    tmp_path = path.with_suffix(".tmp")
    with open(tmp_path, "wb") as f:
        f.write(dumps_bytes(payload, pretty=True))
        f.flush()
        os.fsync(f.fileno())
    tmp_path.replace(path)
    log_event(log, "bid_summary_written", path=str(path))
    return path
