# models.py
from dataclasses import dataclass, field, fields
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from errors import InvalidJobError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    ENQUEUED = "enqueued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"


class Operation(str, Enum):
    REQUEST = "request"
    DOWNLOAD = "download"


class Lane(str, Enum):
    PRIORITY = "priority"   # manual requests
    STANDARD = "standard"   # bulk requests and derived downloads


class LoadClass(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class ReportType(str, Enum):
    LISTINGS = "listings"
    ALL_INVENTORY_REPORT = "all_inventory_report"
    PROCESSING_ORDERS = "processing_orders"
    DISPATCHED_ORDERS = "dispatched_orders"
    COMPLETED_ORDERS = "completed_orders"
    UPCOMING_ORDERS = "upcoming_orders"
    RETURNS_ORDERS = "returns_orders"
    CANCELLED_ORDERS = "cancelled_orders"
    FULFILMENT_RETURN_REPORT = "fulfilment_return_report"
    INVOICE_REPORT = "invoice_report"
    FINANCIAL_REPORT = "financial_report"
    SETTLED_TRANSACTIONS_REPORT = "settled_transactions_report"
    GST_REPORT = "gst_report"
    SALES_REPORT = "sales_report"
    TDS_REPORT = "tds_report"


REQUIRED_FIELDS = ("job_id", "seller_id", "identifier", "report_type", "operation")

_DATETIME_FIELDS = ("scheduled_for", "last_attempt_at", "enqueued_at",
                    "started_at", "completed_at", "reserved_until")


def _as_utc(value):
    """Read naive datetimes as UTC so they compare with ``utcnow()``."""
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class Job:
    job_id: str
    seller_id: str
    identifier: str
    report_type: ReportType
    operation: Operation = Operation.REQUEST
    lane: Lane = Lane.STANDARD
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    credentials: Dict[str, Any] = field(default_factory=dict, repr=False)
    domain: Optional[str] = None
    parent_id: Optional[str] = None
    status: JobStatus = JobStatus.ENQUEUED
    attempts: int = 0
    scheduled_for: Optional[datetime] = None
    last_attempt_at: Optional[datetime] = None
    enqueued_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    reserved_until: Optional[datetime] = None
    error: Optional[str] = None
    result: Optional[Any] = None
    progress: Dict[str, Any] = field(default_factory=dict)

    @property
    def resource_key(self) -> str:
        """Key used for per-resource cooldown spacing."""
        return self.domain or self.identifier

    def validate(self):
        missing = [name for name in REQUIRED_FIELDS if not getattr(self, name)]
        if missing:
            raise InvalidJobError(f"Job is missing required fields: {', '.join(missing)}")
        try:
            self.report_type = ReportType(self.report_type)
            self.operation = Operation(self.operation)
            self.lane = Lane(self.lane)
        except ValueError as e:
            raise InvalidJobError(f"Job {self.job_id}: {e}") from e
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise InvalidJobError(f"Job {self.job_id}: start_date is after end_date")
        for name in _DATETIME_FIELDS:
            setattr(self, name, _as_utc(getattr(self, name)))

    def is_due(self, now: datetime) -> bool:
        return self.scheduled_for is None or self.scheduled_for <= now

    # ---------------- Serialization ----------------
    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Job":
        """Build a job from a producer payload.

        Only the canonical field names are accepted; anything else (including
        camelCase aliases such as ``jobId``) is rejected rather than carried
        along as a partial shape.
        """
        if not isinstance(payload, dict):
            raise InvalidJobError(f"Job payload must be a mapping, got {type(payload).__name__}")

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(payload) - known)
        if unknown:
            raise InvalidJobError(f"Unknown job fields: {', '.join(unknown)}")

        data = dict(payload)
        data.setdefault("job_id", "")
        for name in ("seller_id", "identifier", "report_type"):
            if not data.get(name):
                raise InvalidJobError(f"Job payload is missing '{name}'")

        try:
            for name in ("start_date", "end_date"):
                if isinstance(data.get(name), str):
                    data[name] = date.fromisoformat(data[name])
            for name in _DATETIME_FIELDS:
                if isinstance(data.get(name), str):
                    data[name] = datetime.fromisoformat(data[name])
                data[name] = _as_utc(data.get(name))
            if "status" in data:
                data["status"] = JobStatus(data["status"])
            data["report_type"] = ReportType(data["report_type"])
            data["operation"] = Operation(data.get("operation") or Operation.REQUEST)
            data["lane"] = Lane(data.get("lane") or Lane.STANDARD)
        except ValueError as e:
            raise InvalidJobError(f"Invalid job payload: {e}") from e

        return cls(**data)

    def to_dict(self, include_credentials=False) -> Dict[str, Any]:
        out = {}
        for f in fields(self):
            if f.name == "credentials" and not include_credentials:
                continue
            value = getattr(self, f.name)
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, (date, datetime)):
                value = value.isoformat()
            elif isinstance(value, dict):
                value = dict(value)
            out[f.name] = value
        return out


@dataclass
class ResourceSample:
    cpu_percent: float
    memory_percent: float
    free_memory_mb: int
    total_memory_mb: int = 0
    cpu_count: int = 1
    load_average: tuple = (0.0, 0.0, 0.0)
    load_class: LoadClass = LoadClass.LOW
    recommended_batch_size: int = 0
    can_admit: bool = False
    degraded: bool = False
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def effective_load(self) -> float:
        return max(self.cpu_percent, self.memory_percent)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cpu_percent": self.cpu_percent,
            "memory_percent": self.memory_percent,
            "free_memory_mb": self.free_memory_mb,
            "total_memory_mb": self.total_memory_mb,
            "cpu_count": self.cpu_count,
            "load_average": list(self.load_average),
            "load_class": self.load_class.value,
            "recommended_batch_size": self.recommended_batch_size,
            "can_admit": self.can_admit,
            "degraded": self.degraded,
            "timestamp": self.timestamp.isoformat(),
        }
