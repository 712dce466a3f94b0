"""Result types returned by the lock workflows."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from const import USER_ID_STATUS_NAMES


class SetCodeOutcome(str, Enum):
    """Outcome of a verified set-code attempt."""

    CONFIRMED = "confirmed"
    REJECTED_UNKNOWN_REASON = "rejected_unknown_reason"
    REJECTED_LIKELY_DUPLICATE = "rejected_likely_duplicate"
    DEVICE_UNREACHABLE = "device_unreachable"


@dataclass
class TraceStep:
    """One sub-step of a lock workflow."""

    step: str
    ok: bool
    detail: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SetCodeResult:
    """Result of setting a user code, including the step trace."""

    node_id: int
    slot: int
    outcome: SetCodeOutcome | None = None
    status_before: int | None = None
    status_after: int | None = None
    duplicate_slots: list[int] = field(default_factory=list)
    trace: list[TraceStep] = field(default_factory=list)

    @property
    def confirmed(self) -> bool:
        return self.outcome is SetCodeOutcome.CONFIRMED

    def add_step(self, step: str, ok: bool, detail: str = "") -> None:
        self.trace.append(TraceStep(step, ok, detail))

    def to_dict(self) -> dict[str, Any]:
        return {
            "node_id": self.node_id,
            "slot": self.slot,
            "outcome": self.outcome.value if self.outcome else None,
            "status_before": _status_name(self.status_before),
            "status_after": _status_name(self.status_after),
            "duplicate_slots": list(self.duplicate_slots),
            "trace": [step.to_dict() for step in self.trace],
        }


@dataclass
class LockResult:
    """Result of a lock or unlock command."""

    node_id: int
    action: str                   # lock, unlock
    state: str = "unknown"        # locked, unlocked, unknown
    current_mode: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SlotStatus:
    """A user code slot that is not available. Never carries the PIN."""

    slot: int
    status: int
    label: str | None = None

    @property
    def status_name(self) -> str:
        return _status_name(self.status)

    def to_dict(self) -> dict[str, Any]:
        return {
            "slot": self.slot,
            "status": self.status_name,
            "label": self.label,
        }


@dataclass
class UserCodeListing:
    """Occupied slots of a lock plus slots that could not be queried."""

    node_id: int
    max_slots: int
    slots: list[SlotStatus] = field(default_factory=list)
    failed_slots: list[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "node_id": self.node_id,
            "max_slots": self.max_slots,
            "slots": [s.to_dict() for s in self.slots],
            "failed_slots": list(self.failed_slots),
        }


@dataclass
class DeleteCodeResult:
    """Result of clearing a user code slot."""

    node_id: int
    slot: int
    device_cleared: bool
    removed_from_store: bool
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class LockStatusReport:
    """Current status of a lock node."""

    node_id: int
    name: str
    status: str                   # alive, asleep, awake, dead, unknown
    online: bool
    ready: bool
    secure: bool
    security_class: str
    manufacturer: str
    product: str
    lock_state: str = "unknown"
    current_mode: int | None = None
    battery_level: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class InclusionResult:
    """Result of adding or replacing a node."""

    node_id: int | None
    interview_complete: bool = False
    secure: bool = False
    security_class: str = "None"
    detail: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _status_name(status: int | None) -> str | None:
    if status is None:
        return None
    return USER_ID_STATUS_NAMES.get(status, f"Unknown({status})")
