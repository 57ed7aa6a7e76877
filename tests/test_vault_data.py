"""
Tests for the vault data model.

Tests cover:
- RetentionPeriod codes and durations
- VaultEntry creation and expiry
- VaultIndex queries and immutable transformations
- JSON serialization of the index
"""
import pytest
from datetime import datetime, timedelta, timezone

from navigator_vault.data import (
    EntryType,
    RetentionPeriod,
    VaultEntry,
    VaultIndex,
)


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_entry(entry_id: str, expires_at=None, sha=None, **kwargs) -> VaultEntry:
    return VaultEntry(
        id=entry_id,
        label=f"label-{entry_id}",
        created_at=NOW - timedelta(days=1),
        updated_at=NOW - timedelta(days=1),
        expires_at=expires_at,
        sha=sha,
        **kwargs,
    )


# --- Test Fixtures ---

@pytest.fixture
def mixed_index():
    """Index with expired, live and permanent entries."""
    return VaultIndex(entries=(
        make_entry("a", expires_at=NOW - timedelta(hours=1)),
        make_entry("b", expires_at=NOW + timedelta(hours=1)),
        make_entry("c", expires_at=None),
        make_entry("d", expires_at=NOW),
    ))


# --- Test RetentionPeriod ---

class TestRetentionPeriod:
    """Tests for retention codes."""

    def test_codes(self):
        assert RetentionPeriod.ONE_MINUTE.value == "1m"
        assert RetentionPeriod.ONE_MONTH.value == "1M"
        assert RetentionPeriod.ONE_DAY.value == "1d"

    def test_durations(self):
        assert RetentionPeriod.ONE_HOUR.duration == timedelta(hours=1)
        assert RetentionPeriod.ONE_WEEK.duration == timedelta(days=7)

    def test_expiration(self):
        assert RetentionPeriod.ONE_DAY.expiration(NOW) == NOW + timedelta(days=1)

    def test_from_code_unknown_falls_back(self):
        assert RetentionPeriod.from_code("nope") is RetentionPeriod.ONE_DAY

    def test_from_code(self):
        assert RetentionPeriod.from_code("1w") is RetentionPeriod.ONE_WEEK


# --- Test VaultEntry ---

class TestVaultEntry:
    """Tests for VaultEntry."""

    def test_create_generates_id_and_expiry(self):
        entry = VaultEntry.create("note", size_bytes=10, now=NOW)
        assert entry.id
        assert entry.created_at == NOW
        assert entry.retention is RetentionPeriod.ONE_DAY
        assert entry.expires_at == NOW + timedelta(days=1)
        assert entry.sha is None

    def test_create_ids_are_unique(self):
        assert VaultEntry.create("x").id != VaultEntry.create("x").id

    def test_create_without_retention_never_expires(self):
        entry = VaultEntry.create("note", retention=None, now=NOW)
        assert entry.expires_at is None
        assert entry.is_expired(NOW + timedelta(days=36500)) is False

    def test_is_expired_boundary(self):
        """An entry expiring exactly now is expired."""
        entry = make_entry("x", expires_at=NOW)
        assert entry.is_expired(NOW) is True
        assert entry.is_expired(NOW - timedelta(seconds=1)) is False

    def test_naive_timestamps_are_utc(self):
        entry = make_entry("x", expires_at=datetime(2026, 3, 1, 12, 0))
        assert entry.expires_at.tzinfo is not None
        assert entry.expires_at == NOW

    def test_retention_parsed_from_code(self):
        entry = make_entry("x", retention="1h")
        assert entry.retention is RetentionPeriod.ONE_HOUR

    def test_with_sha(self):
        entry = make_entry("x")
        updated = entry.with_sha("abc")
        assert updated.sha == "abc"
        assert entry.sha is None

    def test_with_retention_recomputes_from_creation(self):
        entry = make_entry("x", expires_at=NOW)
        updated = entry.with_retention(RetentionPeriod.ONE_WEEK)
        assert updated.expires_at == entry.created_at + timedelta(days=7)
        assert entry.with_retention(None).expires_at is None

    def test_empty_id_rejected(self):
        with pytest.raises(ValueError):
            VaultEntry(id="", label="x")

    def test_entry_type(self):
        entry = VaultEntry.create("img", entry_type=EntryType.IMAGE, mime_type="image/png")
        assert entry.entry_type is EntryType.IMAGE
        assert entry.filename == f"{entry.id}.enc"


# --- Test VaultIndex Queries ---

class TestVaultIndexQueries:
    """Tests for index lookups."""

    def test_empty(self):
        index = VaultIndex.empty()
        assert len(index) == 0
        assert index.expired_entries(NOW) == []

    def test_expired_entries_in_index_order(self, mixed_index):
        expired = mixed_index.expired_entries(NOW)
        assert [e.id for e in expired] == ["a", "d"]

    def test_get_entry(self, mixed_index):
        assert mixed_index.get_entry("b").id == "b"
        assert mixed_index.get_entry("zzz") is None
        assert "c" in mixed_index
        assert "zzz" not in mixed_index

    def test_duplicate_ids_rejected(self):
        with pytest.raises(ValueError):
            VaultIndex(entries=(make_entry("a"), make_entry("a")))

    def test_entries_expiring_within(self, mixed_index):
        soon = mixed_index.entries_expiring_within(timedelta(hours=2), now=NOW)
        assert {e.id for e in soon} == {"a", "b", "d"}

    def test_total_size(self):
        index = VaultIndex(entries=(
            make_entry("a", size_bytes=10),
            make_entry("b", size_bytes=5),
        ))
        assert index.total_size == 15


# --- Test VaultIndex Transformations ---

class TestVaultIndexTransformations:
    """Transformations return new indexes and leave the original intact."""

    def test_remove_entries_does_not_mutate(self, mixed_index):
        pruned = mixed_index.remove_entries(["a", "d"])
        assert pruned.ids == ["b", "c"]
        assert mixed_index.ids == ["a", "b", "c", "d"]

    def test_remove_unknown_ids_ignored(self, mixed_index):
        assert mixed_index.remove_entries(["zzz"]).ids == mixed_index.ids

    def test_add_entry(self, mixed_index):
        added = mixed_index.add_entry(make_entry("e"))
        assert added.ids[-1] == "e"
        assert len(mixed_index) == 4

    def test_add_duplicate_rejected(self, mixed_index):
        with pytest.raises(ValueError):
            mixed_index.add_entry(make_entry("a"))

    def test_update_entry(self, mixed_index):
        updated = mixed_index.update_entry(make_entry("b", sha="new"))
        assert updated.get_entry("b").sha == "new"
        assert updated.ids == mixed_index.ids

    def test_update_unknown_rejected(self, mixed_index):
        with pytest.raises(ValueError):
            mixed_index.update_entry(make_entry("zzz"))

    def test_upsert_entry(self):
        index = VaultIndex.empty().upsert_entry(make_entry("a"))
        index = index.upsert_entry(make_entry("a", sha="s"))
        assert index.ids == ["a"]
        assert index.get_entry("a").sha == "s"


# --- Test Serialization ---

class TestSerialization:
    """Tests for index JSON documents."""

    def test_json_keeps_entries_and_expirations(self, mixed_index):
        restored = VaultIndex.from_json(mixed_index.to_json())
        assert restored.ids == mixed_index.ids
        assert restored.get_entry("a").expires_at == NOW - timedelta(hours=1)
        assert restored.get_entry("c").expires_at is None

    def test_invalid_json(self):
        with pytest.raises(ValueError):
            VaultIndex.from_json(b"{not json")
