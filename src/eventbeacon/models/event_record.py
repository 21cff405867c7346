"""
Event record model.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from ..helpers.validation import ParamValue
from ..utils.datetime_utils import _isoformat, _utcnow


def _now_iso() -> str:
    return _isoformat(_utcnow())


@dataclass(frozen=True, slots=True)
class EventRecord:
    """A single tracked event, enriched and ready for delivery. Never mutated once built."""

    name: str
    device_id: str
    platform: str
    app_version: str
    params: Mapping[str, ParamValue] = field(default_factory=dict, hash=False)
    client_timestamp: str = field(default_factory=_now_iso)

    def __post_init__(self) -> None:
        object.__setattr__(self, "params", MappingProxyType(dict(self.params)))

    def to_payload(self) -> dict[str, Any]:
        return {
            "event": self.name,
            "device_id": self.device_id,
            "platform": self.platform,
            "app_version": self.app_version,
            "params": dict(self.params),
            "client_timestamp": self.client_timestamp,
        }
