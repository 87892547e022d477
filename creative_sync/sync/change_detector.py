"""
Field-level change detection and merge-upsert of entity records.

``ChangeDetector.reconcile()`` takes a fresh partial observation of one
record and, inside one store transaction:

  1. reads the stored record (absent → every tracked field has a ``None``
     baseline);
  2. compares each tracked field present in the observation against the
     stored value (unordered list fields compare as sorted sets);
  3. appends one ``ChangelogEntry`` when at least one tracked field changed,
     and one ``CounterSample`` per changed history field;
  4. upserts the merged record.

Merge rules: an observed value replaces the stored one; a field the
observation does not carry (missing or ``None``) keeps its stored value.
Explicit empty values (``""``, ``[]``, ``{}``, ``0``, ``False``) are
observations and are compared and merged like any other value.

Because the changelog append and the record upsert commit together, a
crash between the two never leaves a change recorded without the record
reflecting it, or the reverse.
"""

from __future__ import annotations

import copy
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping, Optional

from creative_sync.exceptions import StoreError
from creative_sync.models.changelog import ChangelogEntry, CounterSample, FieldChange
from creative_sync.store.base import DocumentStore
from creative_sync.sync.profiles import EntityProfile, get_path
from creative_sync.utils.time_utils import to_iso, utcnow

logger = logging.getLogger(__name__)


# ── Results ───────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of reconciling one record.

    Attributes:
        record_id: Id of the reconciled record.
        created: ``True`` if no stored record existed.
        merged: The record as written.
        changes: Tracked field → ``FieldChange``; empty when nothing changed.
        entry: The changelog entry written, if any.
        history: Counter samples written for history fields.
    """

    record_id: str
    created: bool
    merged: dict[str, Any]
    changes: dict[str, FieldChange] = field(default_factory=dict)
    entry: Optional[ChangelogEntry] = None
    history: tuple[CounterSample, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.changes)


@dataclass
class BatchReconcileResult:
    """Outcome of ``reconcile_many``: per-record results and per-record failures."""

    results: list[ReconcileResult] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def changed(self) -> list[ReconcileResult]:
        return [result for result in self.results if result.changed]


# ── Comparison and merge ──────────────────────────────────────────────────────


def _same(old: Any, new: Any) -> bool:
    # bool is an int subclass; True must not equal 1 here.
    if isinstance(old, bool) or isinstance(new, bool):
        return type(old) is type(new) and old == new
    return old == new


def _as_set(value: Any) -> Any:
    if isinstance(value, list):
        return sorted(value, key=repr)
    return value


def merge_records(existing: Mapping[str, Any], fresh: Mapping[str, Any]) -> dict[str, Any]:
    """Deep-merge ``fresh`` over ``existing``; ``None`` in ``fresh`` keeps the stored value.

    Non-empty dicts merge key by key; any other value (including an empty
    dict) replaces the stored one.
    """
    merged = copy.deepcopy(dict(existing))
    for key, value in fresh.items():
        if value is None:
            continue
        current = merged.get(key)
        if isinstance(value, Mapping) and value and isinstance(current, Mapping):
            merged[key] = merge_records(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


# ── Detector ──────────────────────────────────────────────────────────────────


class ChangeDetector:
    """Reconciles fresh observations of one entity kind against the store.

    Args:
        store: Document store.
        profile: Tracked fields, collections and defaults for the entity kind.
        origin: Name recorded on changelog entries and new records.
        clock: Source of "now" (injected in tests).
    """

    def __init__(
        self,
        store: DocumentStore,
        profile: EntityProfile,
        origin: str,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.profile = profile
        self.origin = origin
        self._clock = clock

    # ── Public API ────────────────────────────────────────────────────────────

    def reconcile(self, record_id: str, fresh: Mapping[str, Any]) -> ReconcileResult:
        """Compare, log and merge one fresh observation.

        Raises:
            StoreError: The transaction could not be committed; nothing was written.
        """
        now = self._clock()
        with self.store.atomic():
            existing = self.store.get(self.profile.collection, record_id)
            result = self._compute(record_id, existing, fresh, now)
            self._write([result])
        self._log(result)
        return result

    def reconcile_many(self, observations: Mapping[str, Mapping[str, Any]]) -> BatchReconcileResult:
        """Reconcile a batch in one transaction.

        If the batch transaction fails, every record is retried on its own so
        that one bad record costs only itself.
        """
        if not observations:
            return BatchReconcileResult()

        now = self._clock()
        try:
            with self.store.atomic():
                existing = self.store.get_many(self.profile.collection, observations.keys())
                results = [
                    self._compute(record_id, existing.get(record_id), fresh, now)
                    for record_id, fresh in observations.items()
                ]
                self._write(results)
        except Exception as exc:
            logger.warning(
                "Batch reconcile of %d %s records failed, retrying one by one: %s",
                len(observations), self.profile.kind, exc,
            )
            return self._reconcile_each(observations)

        for result in results:
            self._log(result)
        return BatchReconcileResult(results=results)

    def ensure_exists(
        self,
        record_ids: Iterable[str],
        metadata: Optional[Mapping[str, Mapping[str, Any]]] = None,
    ) -> list[str]:
        """Create placeholder records for ids not yet stored.

        Placeholders carry profile defaults and metadata only, so they never
        produce a changelog entry of their own; the first real observation is
        compared against a ``None`` baseline as usual.

        Args:
            record_ids: Candidate ids.
            metadata: Optional id → extra metadata for the new record.

        Returns:
            Sorted ids of the records created.
        """
        ids = sorted(set(record_ids))
        if not ids:
            return []
        metadata = metadata or {}
        now = self._clock()
        with self.store.atomic():
            existing = self.store.get_many(self.profile.collection, ids)
            placeholders = {
                record_id: self.profile.new_record(
                    record_id, self.origin, now, metadata.get(record_id)
                )
                for record_id in ids
                if record_id not in existing
            }
            if not placeholders:
                return []
            result = self.store.bulk_upsert(self.profile.collection, placeholders)
            if not result.ok:
                raise StoreError(f"Placeholder upsert failed: {result.failed}")

        logger.info(
            "Created %d placeholder %s records (origin=%s).",
            len(result.succeeded), self.profile.kind, self.origin,
        )
        return sorted(result.succeeded)

    def delete(self, record_id: str) -> bool:
        """Remove a record the platform reports as gone; ``True`` if it existed."""
        deleted = self.store.delete(self.profile.collection, record_id)
        if deleted:
            logger.info("Deleted %s %s (no longer exists upstream).", self.profile.kind, record_id)
        return deleted

    # ── Internals ─────────────────────────────────────────────────────────────

    def _reconcile_each(self, observations: Mapping[str, Mapping[str, Any]]) -> BatchReconcileResult:
        batch = BatchReconcileResult()
        for record_id, fresh in observations.items():
            try:
                batch.results.append(self.reconcile(record_id, fresh))
            except Exception as exc:
                batch.failed[record_id] = str(exc)
                logger.error("Reconcile of %s %s failed: %s", self.profile.kind, record_id, exc)
        return batch

    def _compute(
        self,
        record_id: str,
        existing: Optional[dict[str, Any]],
        fresh: Mapping[str, Any],
        now: datetime,
    ) -> ReconcileResult:
        created = existing is None
        base = existing if existing is not None else self.profile.new_record(record_id, self.origin, now)

        changes: dict[str, FieldChange] = {}
        for path in self.profile.tracked_fields:
            change = self._field_change(path, existing, fresh)
            if change is not None:
                changes[path] = change

        history = []
        for path in self.profile.history_fields:
            change = self._field_change(path, existing, fresh)
            if change is not None:
                history.append(CounterSample(
                    subject_id=record_id,
                    field=path,
                    old=change.old,
                    new=change.new,
                    timestamp=now,
                    origin=self.origin,
                ))

        merged = merge_records(base, fresh)
        merged["id"] = record_id
        merged["kind"] = self.profile.kind
        meta = merged.setdefault("metadata", {})
        meta["last_synced"] = to_iso(now)
        if changes:
            meta["last_changed"] = to_iso(now)

        entry = None
        if changes:
            entry = ChangelogEntry(
                subject_id=record_id,
                subject_kind=self.profile.kind,
                update=copy.deepcopy(dict(fresh)),
                changes=changes,
                timestamp=now,
                origin=self.origin,
            )
        return ReconcileResult(
            record_id=record_id,
            created=created,
            merged=merged,
            changes=changes,
            entry=entry,
            history=tuple(history),
        )

    def _field_change(
        self,
        path: str,
        existing: Optional[Mapping[str, Any]],
        fresh: Mapping[str, Any],
    ) -> Optional[FieldChange]:
        new = get_path(fresh, path)
        if new is None:
            return None
        old = get_path(existing, path)
        if path in self.profile.unordered_fields:
            if _same(_as_set(old), _as_set(new)):
                return None
        elif _same(old, new):
            return None
        return FieldChange(old=copy.deepcopy(old), new=copy.deepcopy(new))

    def _write(self, results: list[ReconcileResult]) -> None:
        """Append audit records and upsert merged records; caller holds the transaction."""
        entries = [result.entry.to_document() for result in results if result.entry is not None]
        if entries:
            self.store.append(self.profile.changelog_collection, entries)

        history: dict[str, list[dict[str, Any]]] = defaultdict(list)
        for result in results:
            for sample in result.history:
                history[self.profile.history_fields[sample.field]].append(sample.to_document())
        for collection, samples in history.items():
            self.store.append(collection, samples)

        upserted = self.store.bulk_upsert(
            self.profile.collection, {result.record_id: result.merged for result in results}
        )
        if not upserted.ok:
            raise StoreError(
                f"Upsert of {len(upserted.failed)} {self.profile.kind} records failed: "
                f"{upserted.failed}"
            )

    def _log(self, result: ReconcileResult) -> None:
        if result.changed:
            logger.debug(
                "%s %s changed: %s",
                self.profile.kind, result.record_id, ", ".join(sorted(result.changes)),
            )
