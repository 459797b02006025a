"""Domain entities for device sync operations.

These are pure data structures with no infrastructure dependencies.
They represent the core business objects of the ABM/ASM device sync:
device references gathered from MDM server scopes, enriched device
records, management servers and device activities.
"""

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

logger = logging.getLogger(__name__)

NO_END_DATE = "No end date"
UNASSIGNED_LABEL = "Unassigned"


# ============================================
# Collection Entities
# ============================================


@dataclass(frozen=True)
class DeviceReference:
    """Minimal pointer to a device, as returned by a listing endpoint."""

    id: str


class WorkingSet:
    """Insertion-ordered set of device references, unique by id.

    Iteration yields references in first-seen order, so a device listed
    under several MDM servers appears once, at the position of its first
    scope.
    """

    def __init__(self, refs: Iterable[DeviceReference] = ()):
        self._refs: dict[str, DeviceReference] = {}
        self.union(refs)

    def add(self, ref: DeviceReference) -> bool:
        """Add a reference. Returns False if its id was already present."""
        if ref.id in self._refs:
            return False
        self._refs[ref.id] = ref
        return True

    def union(self, refs: Iterable[DeviceReference]) -> int:
        """Merge references into the set. Returns how many were new."""
        return sum(1 for ref in refs if self.add(ref))

    @property
    def ids(self) -> list[str]:
        return list(self._refs)

    def __iter__(self) -> Iterator[DeviceReference]:
        return iter(list(self._refs.values()))

    def __len__(self) -> int:
        return len(self._refs)

    def __contains__(self, item: object) -> bool:
        if isinstance(item, DeviceReference):
            return item.id in self._refs
        return item in self._refs

    def __repr__(self) -> str:
        return f"WorkingSet({len(self)} devices)"


# ============================================
# Device Entities
# ============================================


@dataclass(frozen=True)
class ManagementServer:
    """An MDM server registered in the organization.

    Fetched once per run; doubles as the id -> name lookup table used when
    resolving device assignments.
    """

    id: str
    name: str
    server_type: str | None = None


@dataclass(frozen=True)
class AssignedServer:
    """The MDM server a device is assigned to.

    ``UNASSIGNED`` (id None) stands for "no assignment", including the case
    where the assignment lookup itself failed.
    """

    id: str | None
    name: str

    @property
    def is_assigned(self) -> bool:
        return self.id is not None


UNASSIGNED = AssignedServer(id=None, name=UNASSIGNED_LABEL)


@dataclass(frozen=True)
class CoverageEntry:
    """One AppleCare coverage plan of a device."""

    description: str = ""
    status: str = ""
    start_date_time: str = ""
    end_date_time: str = NO_END_DATE
    payment_type: str = ""

    def to_dict(self) -> dict[str, str]:
        return {
            "description": self.description,
            "status": self.status,
            "startDateTime": self.start_date_time,
            "endDateTime": self.end_date_time,
            "paymentType": self.payment_type,
        }


@dataclass
class DeviceRecord:
    """Domain entity representing an enriched organization device.

    A record exists only when the primary detail fetch succeeded. The
    assignment and coverage lookups are best-effort and fall back to
    ``UNASSIGNED`` and an empty list.
    The raw_data field preserves the device attributes for the JSON dump.
    """

    # Primary identifier
    id: str

    # Core device info
    serial_number: str = ""
    model: str = ""  # API field: "deviceModel"
    product_family: str = ""
    product_type: str = ""
    status: str = ""
    color: str = ""
    capacity: str = ""  # API field: "deviceCapacity"
    wifi_mac_address: str = ""

    # Organization lifecycle
    added_to_org_date_time: str = ""
    released_from_org_date_time: str = ""

    # Related resources
    assigned_server: AssignedServer = UNASSIGNED
    coverage_entries: list[CoverageEntry] = field(default_factory=list)

    # Device attributes as returned by the API
    raw_data: dict[str, Any] = field(default_factory=dict)

    @property
    def is_assigned(self) -> bool:
        return self.assigned_server.is_assigned

    @property
    def has_coverage(self) -> bool:
        return bool(self.coverage_entries)


@dataclass
class EnrichmentResult:
    """Result of an enrichment batch.

    Failed devices are counted and listed but never abort the batch.
    """

    records: list[DeviceRecord] = field(default_factory=list)
    success_count: int = 0
    error_count: int = 0
    failed_ids: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.success_count + self.error_count

    @property
    def has_failures(self) -> bool:
        return self.error_count > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "succeeded": self.success_count,
            "failed": self.error_count,
            "failed_ids": list(self.failed_ids),
        }


# ============================================
# Activity Entities
# ============================================


class ActivityState(str, Enum):
    """States of the device activity state machine."""

    SUBMITTED = "SUBMITTED"
    POLLING = "POLLING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"

    @property
    def is_terminal(self) -> bool:
        return self in (ActivityState.COMPLETED, ActivityState.FAILED, ActivityState.TIMED_OUT)


class MutationKind(str, Enum):
    """Bulk mutations that can be submitted as a device activity."""

    ASSIGN = "ASSIGN"
    UNASSIGN = "UNASSIGN"

    @property
    def activity_type(self) -> str:
        """Value of ``attributes.activityType`` in the activity request."""
        return f"{self.value}_DEVICES"

    @property
    def requires_target(self) -> bool:
        return self is MutationKind.ASSIGN


TERMINAL_ACTIVITY_STATUSES = frozenset({"COMPLETED", "FAILED"})


@dataclass
class ActivitySnapshot:
    """Point-in-time view of a device activity as reported by the API.

    Any status other than COMPLETED or FAILED (PENDING, PROCESSING,
    IN_PROGRESS, or anything vendor-defined) means still in progress.
    """

    id: str
    status: str = ""
    sub_status: str = ""
    created_at: str = ""
    completed_at: str | None = None
    download_url: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status.upper() in TERMINAL_ACTIVITY_STATUSES

    @property
    def terminal_state(self) -> ActivityState | None:
        """COMPLETED or FAILED for a terminal snapshot, otherwise None."""
        if not self.is_terminal:
            return None
        return ActivityState(self.status.upper())

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> "ActivitySnapshot":
        """Build a snapshot from an ``orgDeviceActivities`` resource object."""
        attributes = payload.get("attributes") or {}
        return cls(
            id=payload.get("id", ""),
            status=attributes.get("status") or "",
            sub_status=attributes.get("subStatus") or "",
            created_at=attributes.get("createdDateTime") or "",
            completed_at=attributes.get("completedDateTime"),
            download_url=attributes.get("downloadUrl"),
            raw=payload,
        )


@dataclass
class MonitorResult:
    """Outcome of monitoring an activity.

    A TIMED_OUT result still carries the activity id: the activity keeps
    running server-side and can be inspected later.
    """

    activity_id: str
    state: ActivityState
    snapshot: ActivitySnapshot | None = None
    checks: int = 0

    @property
    def succeeded(self) -> bool:
        return self.state is ActivityState.COMPLETED

    @property
    def timed_out(self) -> bool:
        return self.state is ActivityState.TIMED_OUT

    @property
    def download_url(self) -> str | None:
        return self.snapshot.download_url if self.snapshot else None


# ============================================
# Input Parsing
# ============================================


@dataclass(frozen=True)
class Cancelled:
    """The caller gave no input."""


@dataclass(frozen=True)
class Invalid:
    """The input could not be turned into a usable selection."""

    reason: str


@dataclass(frozen=True)
class Selected:
    """Validated server ids, in input order, without duplicates."""

    ids: tuple[str, ...]


ServerSelection = Union[Cancelled, Invalid, Selected]


def _split_ids(text: str) -> list[str]:
    """Split on commas and newlines, trim, drop blanks and duplicates."""
    seen: dict[str, None] = {}
    for line in text.splitlines():
        for part in line.split(","):
            value = part.strip()
            if value:
                seen.setdefault(value, None)
    return list(seen)


def parse_server_selection(
    raw: str | None,
    servers: Iterable[ManagementServer],
) -> ServerSelection:
    """Validate user-supplied MDM server ids against the known servers.

    Empty input cancels. Unknown ids are skipped with a warning; if none
    remain the selection is Invalid.
    """
    if raw is None or not raw.strip():
        return Cancelled()

    known = {server.id for server in servers}
    if not known:
        return Invalid("No MDM servers available")

    selected = []
    for server_id in _split_ids(raw):
        if server_id in known:
            selected.append(server_id)
        else:
            logger.warning(f"MDM server ID '{server_id}' not found, skipping")

    if not selected:
        return Invalid("No valid MDM servers selected")

    return Selected(tuple(selected))


def parse_device_ids(text: str | None) -> list[str]:
    """Parse comma- or newline-separated device ids (order kept, deduplicated)."""
    if not text:
        return []
    return _split_ids(text)
