"""
Counters describing what the pipeline did with tracked events.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from ..core.errors import DropReason


@dataclass
class PipelineStats:
    admitted: int = 0
    delivered: int = 0
    batches_sent: int = 0
    retries_scheduled: int = 0
    serialization_downgrades: int = 0
    teardown_sends: int = 0
    dropped: dict[DropReason, int] = field(default_factory=dict)

    def record_drop(self, reason: DropReason, count: int = 1) -> None:
        if count <= 0:
            return
        self.dropped[reason] = self.dropped.get(reason, 0) + count

    def dropped_for(self, reason: DropReason) -> int:
        return self.dropped.get(reason, 0)

    @property
    def throttled(self) -> int:
        return self.dropped_for(DropReason.THROTTLED)

    def snapshot(self) -> dict[str, Any]:
        data = asdict(self)
        data["dropped"] = {reason.value: count for reason, count in self.dropped.items()}
        return data
