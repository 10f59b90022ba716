"""Progress checkpoints, final aggregates and resume support.

Writes are plain overwrites with no atomic rename; a crash mid-write can leave
a truncated file, which ``load_progress`` then treats as absent.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .errors import ConfigError, PersistenceError
from .models import (
    RUN_COMPLETED,
    RUN_FAILED,
    RUN_IN_PROGRESS,
    MemberRecord,
    RunCheckpoint,
    SearchResult,
    SearchUnit,
)
from .validation import normalize_postcode

PROGRESS_PREFIX = "progress_"
PARTIAL_PREFIX = "partial_"


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def compute_resume_index(
    units: Sequence[SearchUnit], marker: str | None, *, logger: logging.Logger
) -> int:
    """Return the position of marker in units, or 0 when absent."""
    if marker is None:
        return 0
    try:
        wanted = normalize_postcode(marker)
    except ConfigError:
        logger.warning(
            "Resume postcode %r is not a valid postcode, starting from beginning", marker
        )
        return 0
    for index, unit in enumerate(units):
        if unit.postcode == wanted:
            logger.info("Resuming from postcode %s (index %d)", wanted, index)
            return index
    logger.warning("Resume postcode %s not found, starting from beginning", wanted)
    return 0


def seed_results(
    prior: RunCheckpoint | None, units: Sequence[SearchUnit], start_index: int
) -> list[SearchResult]:
    """Prior results for the units before start_index, in unit order, one per unit.

    Seeding stops at the first unit the checkpoint does not hold, so the
    result is always a gap-free prefix of units.
    """
    if prior is None or start_index <= 0:
        return []
    by_postcode: dict[str, SearchResult] = {}
    for result in prior.results:
        by_postcode.setdefault(result.unit.postcode, result)
    seeded: list[SearchResult] = []
    for unit in units[:start_index]:
        result = by_postcode.get(unit.postcode)
        if result is None:
            break
        seeded.append(result)
    return seeded


def build_final_aggregate(
    results: Iterable[SearchResult], *, completed_at: str, status: str = RUN_COMPLETED
) -> dict[str, Any]:
    """Summarize results per postcode and flatten the members of successful ones."""
    all_members: list[dict[str, Any]] = []
    postcode_summary: list[dict[str, Any]] = []
    total = successful = failed = total_members = 0
    for result in results:
        total += 1
        if result.succeeded:
            successful += 1
            total_members += result.record_count
            all_members.extend(record.to_dict() for record in result.records)
        else:
            failed += 1
        postcode_summary.append(
            {
                "postcode": result.unit.postcode,
                "memberCount": result.record_count,
                "state": result.unit.region,
                "status": result.status,
                "error": result.error,
            }
        )
    return {
        "summary": {
            "total_postcodes_processed": total,
            "successful_postcodes": successful,
            "failed_postcodes": failed,
            "total_members_found": total_members,
            "scrape_completed": completed_at,
            "status": status,
        },
        "postcode_summary": postcode_summary,
        "all_members": all_members,
    }


def build_single_output(records: Sequence[MemberRecord]) -> dict[str, Any]:
    return {
        "totalCount": len(records),
        "searchDetails": [record.to_dict() for record in records],
    }


def _write_json(path: Path, payload: dict[str, Any]) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as file_obj:
            json.dump(payload, file_obj, indent=2, ensure_ascii=False)
    except (OSError, TypeError, ValueError) as exc:
        raise PersistenceError(f"Could not write {path}: {exc}") from exc


class CheckpointStore:
    """Serializes run snapshots next to the configured output file."""

    def __init__(
        self,
        output: str,
        *,
        logger: logging.Logger,
        checkpoint_path: str | None = None,
    ) -> None:
        self.output_path = Path(output)
        name = self.output_path.name
        self.progress_path = (
            Path(checkpoint_path)
            if checkpoint_path
            else self.output_path.with_name(f"{PROGRESS_PREFIX}{name}")
        )
        self.partial_path = self.output_path.with_name(f"{PARTIAL_PREFIX}{name}")
        self._logger = logger
        self._last_processed: int | None = None

    def write_progress(self, results: Sequence[SearchResult], processed: int, total: int) -> bool:
        """Write an in-progress snapshot; a repeat for the same count is skipped."""
        if processed == self._last_processed:
            self._logger.debug("Progress for %d units already saved", processed)
            return False
        checkpoint = RunCheckpoint(
            status=RUN_IN_PROGRESS,
            processed=processed,
            total=total,
            timestamp=utc_timestamp(),
            results=tuple(results),
        )
        _write_json(self.progress_path, checkpoint.to_dict())
        self._last_processed = processed
        self._logger.info(
            "Progress saved to %s (%d/%d postcodes)", self.progress_path, processed, total
        )
        return True

    def load_progress(self) -> RunCheckpoint | None:
        """Load the last progress snapshot, or None when missing or unreadable."""
        if not self.progress_path.exists():
            return None
        try:
            with self.progress_path.open("r", encoding="utf-8") as file_obj:
                payload = json.load(file_obj)
            checkpoint = RunCheckpoint.from_dict(payload)
        except (OSError, ValueError, KeyError, TypeError) as exc:
            self._logger.warning("Ignoring unreadable checkpoint %s: %s", self.progress_path, exc)
            return None
        self._logger.info(
            "Loaded checkpoint from %s (%d/%d postcodes, last updated %s)",
            self.progress_path,
            checkpoint.processed,
            checkpoint.total,
            checkpoint.timestamp,
        )
        return checkpoint

    def write_final(self, results: Sequence[SearchResult]) -> dict[str, Any]:
        aggregate = build_final_aggregate(results, completed_at=utc_timestamp())
        _write_json(self.output_path, aggregate)
        summary = aggregate["summary"]
        self._logger.info(
            "Final results saved to %s: %d members across %d postcodes",
            self.output_path,
            summary["total_members_found"],
            summary["successful_postcodes"],
        )
        return aggregate

    def write_partial(
        self, results: Sequence[SearchResult], *, status: str = RUN_FAILED
    ) -> dict[str, Any]:
        aggregate = build_final_aggregate(results, completed_at=utc_timestamp(), status=status)
        _write_json(self.partial_path, aggregate)
        self._logger.info("Partial results saved to %s", self.partial_path)
        return aggregate

    def write_single(self, records: Sequence[MemberRecord]) -> dict[str, Any]:
        payload = build_single_output(records)
        _write_json(self.output_path, payload)
        self._logger.info("Results saved to %s (%d members)", self.output_path, len(records))
        return payload
