"""Data models for the store and sync layers."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StoreMode(str, Enum):
    """Which backend currently serves reads and writes."""

    PRIMARY = "primary"
    FALLBACK = "fallback"


class WriteKind(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class TableStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED_EMPTY = "skipped_empty"
    SKIPPED_CURRENT = "skipped_current"


class RunStatus(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"      # at least one table failed
    ABORTED = "aborted"    # primary lost, remaining tables not attempted
    BUSY = "busy"          # another run was active, nothing done


@dataclass(frozen=True)
class TableDescriptor:
    """Static description of one synchronized table."""

    name: str
    columns: tuple[str, ...]
    primary_key: str = "id"
    depends_on: tuple[str, ...] = ()
    natural_key: tuple[str, ...] = ()

    def __post_init__(self):
        if self.primary_key not in self.columns:
            raise ValueError(
                f"{self.name}: primary key {self.primary_key!r} "
                f"is not a column"
            )
        missing = [c for c in self.natural_key if c not in self.columns]
        if missing:
            raise ValueError(
                f"{self.name}: natural key columns {missing} are not columns"
            )

    @property
    def column_list(self) -> str:
        return ", ".join(self.columns)

    def key_for(self, values: dict) -> str:
        """Natural key string for a row payload, used for de-duplication.

        Falls back to the primary key when the table has no natural key
        or the payload lacks one of its columns.
        """
        cols = self.natural_key or (self.primary_key,)
        if any(values.get(c) is None for c in cols):
            cols = (self.primary_key,)
        parts = ",".join(f"{c}={values.get(c)}" for c in cols)
        return f"{self.name}:{parts}"


@dataclass(frozen=True)
class Row:
    """Ordered column values for one table row."""

    table: str
    values: tuple

    def as_dict(self, descriptor: TableDescriptor) -> dict:
        return dict(zip(descriptor.columns, self.values))


@dataclass
class PendingWrite:
    """A write that could not be applied to the primary store."""

    table: str
    kind: WriteKind
    payload: dict
    natural_key: str
    enqueued_at: datetime = field(default_factory=utc_now)

    @classmethod
    def for_row(cls, descriptor: TableDescriptor, kind: WriteKind,
                payload: dict) -> "PendingWrite":
        return cls(
            table=descriptor.name,
            kind=WriteKind(kind),
            payload=dict(payload),
            natural_key=descriptor.key_for(payload),
        )


@dataclass
class TableOutcome:
    table: str
    status: TableStatus
    local_count: int = 0
    primary_count: int = 0
    copied: int = 0
    error: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status is not TableStatus.FAILURE


@dataclass
class SyncRun:
    """One reconciliation attempt. Never persisted."""

    started_at: datetime = field(default_factory=utc_now)
    status: RunStatus = RunStatus.RUNNING
    tables: list[TableOutcome] = field(default_factory=list)
    finished_at: Optional[datetime] = None
    error: str = ""

    @property
    def success(self) -> bool:
        return self.status is RunStatus.SUCCEEDED

    @property
    def failed_tables(self) -> list[str]:
        return [t.table for t in self.tables if not t.succeeded]

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def outcome_for(self, table: str) -> Optional[TableOutcome]:
        for outcome in self.tables:
            if outcome.table == table:
                return outcome
        return None

    def finish(self, status: RunStatus, error: str = ""):
        self.status = status
        self.error = error
        self.finished_at = utc_now()

    def summary(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": (
                self.finished_at.isoformat() if self.finished_at else None
            ),
            "tables": {t.table: t.status.value for t in self.tables},
            "error": self.error,
        }
