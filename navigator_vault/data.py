"""
Vault data model — entries and the index (manifest) that lists them.

Both are immutable pydantic models: every "mutation" on ``VaultIndex``
returns a new instance, so an index handed to a reader stays valid while a
new one is being built. The index is serialized with orjson, encrypted and
stored remotely as ``index.enc``.
"""
import uuid
from enum import Enum
from typing import Any, ClassVar, Optional, Union
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone

import orjson
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .conf import VAULT_ENTRY_SUFFIX


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Normalize a datetime to timezone-aware UTC (naive values are UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


_RETENTION = {
    "1m": (timedelta(minutes=1), "1 minute"),
    "1h": (timedelta(hours=1), "1 hour"),
    "1d": (timedelta(days=1), "1 day"),
    "1w": (timedelta(days=7), "1 week"),
    "1M": (timedelta(days=30), "1 month"),
    "1y": (timedelta(days=365), "1 year"),
    "10y": (timedelta(days=3650), "10 years"),
    "100y": (timedelta(days=36500), "Forever"),
}


class RetentionPeriod(str, Enum):
    """How long an entry is kept before the expiry sweep purges it."""

    ONE_MINUTE = "1m"
    ONE_HOUR = "1h"
    ONE_DAY = "1d"
    ONE_WEEK = "1w"
    ONE_MONTH = "1M"
    ONE_YEAR = "1y"
    TEN_YEARS = "10y"
    HUNDRED_YEARS = "100y"

    @property
    def duration(self) -> timedelta:
        return _RETENTION[self.value][0]

    @property
    def label(self) -> str:
        return _RETENTION[self.value][1]

    def expiration(self, start: datetime) -> datetime:
        return as_utc(start) + self.duration

    @classmethod
    def from_code(cls, code: str) -> "RetentionPeriod":
        """Parse a retention code, falling back to one day."""
        try:
            return cls(code)
        except ValueError:
            return cls.ONE_DAY


class EntryType(str, Enum):
    TEXT = "text"
    IMAGE = "image"


class VaultEntry(BaseModel):
    """Metadata of one encrypted blob stored under ``data/<id>.enc``.

    ``expires_at`` set to None means the entry never expires.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    label: str
    entry_type: EntryType = EntryType.TEXT
    mime_type: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    size_bytes: int = Field(default=0, ge=0)
    sha: Optional[str] = None
    retention: Optional[RetentionPeriod] = None
    expires_at: Optional[datetime] = None

    @field_validator("created_at", "updated_at", "expires_at")
    @classmethod
    def normalize_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        return None if v is None else as_utc(v)

    @field_validator("retention", mode="before")
    @classmethod
    def parse_retention(cls, v: Any) -> Any:
        if isinstance(v, str) and not isinstance(v, RetentionPeriod):
            return RetentionPeriod.from_code(v)
        return v

    @classmethod
    def create(
        cls,
        label: str,
        size_bytes: int = 0,
        entry_type: EntryType = EntryType.TEXT,
        mime_type: Optional[str] = None,
        retention: Optional[RetentionPeriod] = RetentionPeriod.ONE_DAY,
        now: Optional[datetime] = None,
    ) -> "VaultEntry":
        """Build a new entry with a fresh identifier.

        Args:
            label: User-facing description.
            size_bytes: Size of the encrypted blob.
            entry_type: Kind of content.
            mime_type: Optional MIME type of the plaintext.
            retention: Retention period; None keeps the entry forever.
            now: Creation time (defaults to the current UTC time).

        Returns:
            The new VaultEntry (no remote ``sha`` yet).
        """
        created = as_utc(now) if now else utcnow()
        return cls(
            id=uuid.uuid4().hex,
            label=label,
            entry_type=entry_type,
            mime_type=mime_type,
            created_at=created,
            updated_at=created,
            size_bytes=size_bytes,
            retention=retention,
            expires_at=retention.expiration(created) if retention else None,
        )

    @property
    def filename(self) -> str:
        return f"{self.id}{VAULT_ENTRY_SUFFIX}"

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """True when ``expires_at`` is set and at or before ``now``."""
        if self.expires_at is None:
            return False
        return self.expires_at <= (as_utc(now) if now else utcnow())

    def time_remaining(self, now: Optional[datetime] = None) -> Optional[timedelta]:
        if self.expires_at is None:
            return None
        remaining = self.expires_at - (as_utc(now) if now else utcnow())
        return max(remaining, timedelta(0))

    def with_sha(self, sha: str) -> "VaultEntry":
        return self.model_copy(update={"sha": sha, "updated_at": utcnow()})

    def with_retention(
        self,
        retention: Optional[RetentionPeriod],
    ) -> "VaultEntry":
        """Copy with a new retention period, recomputed from ``created_at``."""
        return self.model_copy(update={
            "retention": retention,
            "expires_at": retention.expiration(self.created_at) if retention else None,
            "updated_at": utcnow(),
        })

    def __str__(self) -> str:
        return f"VaultEntry({self.id}, {self.label}, {self.entry_type.value})"


class VaultIndex(BaseModel):
    """Ordered manifest of vault entries, keyed by entry id.

    Insertion order is preserved and significant: the expiry sweep picks its
    batch in index order.
    """

    model_config = ConfigDict(frozen=True)

    CURRENT_VERSION: ClassVar[int] = 2

    version: int = 2
    entries: tuple[VaultEntry, ...] = ()
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("updated_at")
    @classmethod
    def normalize_updated_at(cls, v: datetime) -> datetime:
        return as_utc(v)

    @model_validator(mode="after")
    def validate_unique_ids(self) -> "VaultIndex":
        seen = set()
        for entry in self.entries:
            if entry.id in seen:
                raise ValueError(f"Duplicate entry id in index: {entry.id}")
            seen.add(entry.id)
        return self

    @classmethod
    def empty(cls) -> "VaultIndex":
        return cls(entries=())

    def _with_entries(self, entries: Iterable[VaultEntry]) -> "VaultIndex":
        return VaultIndex(version=self.version, entries=tuple(entries))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, entry_id: object) -> bool:
        return self.has_entry(str(entry_id))

    @property
    def ids(self) -> list[str]:
        return [e.id for e in self.entries]

    @property
    def total_size(self) -> int:
        return sum(e.size_bytes for e in self.entries)

    def get_entry(self, entry_id: str) -> Optional[VaultEntry]:
        for entry in self.entries:
            if entry.id == entry_id:
                return entry
        return None

    def has_entry(self, entry_id: str) -> bool:
        return self.get_entry(entry_id) is not None

    def expired_entries(self, now: Optional[datetime] = None) -> list[VaultEntry]:
        """Entries whose expiration is at or before ``now``, in index order."""
        now = as_utc(now) if now else utcnow()
        return [e for e in self.entries if e.is_expired(now)]

    def entries_expiring_within(
        self,
        delta: timedelta,
        now: Optional[datetime] = None,
    ) -> list[VaultEntry]:
        threshold = (as_utc(now) if now else utcnow()) + delta
        return [
            e for e in self.entries
            if e.expires_at is not None and e.expires_at < threshold
        ]

    def entries_by_date(self) -> list[VaultEntry]:
        """Entries sorted newest first."""
        return sorted(self.entries, key=lambda e: e.created_at, reverse=True)

    # ------------------------------------------------------------------
    # Transformations (always return a new index)
    # ------------------------------------------------------------------

    def add_entry(self, entry: VaultEntry) -> "VaultIndex":
        if self.has_entry(entry.id):
            raise ValueError(f"Entry with ID {entry.id} already exists")
        return self._with_entries((*self.entries, entry))

    def update_entry(self, entry: VaultEntry) -> "VaultIndex":
        if not self.has_entry(entry.id):
            raise ValueError(f"Entry with ID {entry.id} not found")
        return self._with_entries(
            entry if e.id == entry.id else e for e in self.entries
        )

    def upsert_entry(self, entry: VaultEntry) -> "VaultIndex":
        if self.has_entry(entry.id):
            return self.update_entry(entry)
        return self.add_entry(entry)

    def remove_entry(self, entry_id: str) -> "VaultIndex":
        return self.remove_entries([entry_id])

    def remove_entries(self, ids: Iterable[str]) -> "VaultIndex":
        """Return a new index without ``ids``; unknown ids are ignored."""
        drop = set(ids)
        return self._with_entries(e for e in self.entries if e.id not in drop)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_json(self) -> bytes:
        return orjson.dumps(self.model_dump(mode="json", exclude_none=True))

    @classmethod
    def from_json(cls, data: Union[bytes, str]) -> "VaultIndex":
        """Parse a decrypted index document.

        Raises:
            ValueError: If the document is not valid JSON or not a valid index.
        """
        try:
            parsed = orjson.loads(data)
        except orjson.JSONDecodeError as err:
            raise ValueError(f"Index is not valid JSON: {err}") from err
        return cls.model_validate(parsed)

    def __str__(self) -> str:
        return f"VaultIndex(v{self.version}, {len(self.entries)} entries)"
