"""Output reporting helpers."""
from __future__ import annotations

import csv
import json
import os
import tempfile
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Iterator, List, Optional, TextIO

from .models import DispatchBatchResult, DispatchOutcome, RankedWorker, SearchResult

RANKED_FIELDNAMES = [
    "person_id",
    "worker_profile_id",
    "display_name",
    "postal_code",
    "latitude",
    "longitude",
    "distance_miles",
    "eligible",
]


def ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def _fsync_dir(path: str) -> None:
    try:
        dir_fd = os.open(path, os.O_DIRECTORY)
    except OSError:
        return
    try:
        os.fsync(dir_fd)
    except OSError:
        pass
    finally:
        os.close(dir_fd)


@contextmanager
def atomic_writer(
    path: str,
    mode: str = "w",
    encoding: str = "utf-8",
    newline: Optional[str] = None,
) -> Iterator[TextIO]:
    dir_path = os.path.dirname(path) or "."
    base = os.path.basename(path)
    fd, tmp_path = tempfile.mkstemp(prefix=f".{base}.", suffix=".tmp", dir=dir_path)
    try:
        with os.fdopen(fd, mode, encoding=encoding, newline=newline) as f:
            yield f
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
        _fsync_dir(dir_path)
    except Exception:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def write_ranked_csv(path: str, workers: Iterable[RankedWorker]) -> None:
    with atomic_writer(path, mode="w", encoding="utf-8", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=RANKED_FIELDNAMES)
        writer.writeheader()
        for worker in workers:
            writer.writerow(worker.to_row())


def write_ranked_json(path: str, result: SearchResult) -> None:
    payload: Dict[str, Any] = {
        "location": {
            "latitude": result.location.latitude,
            "longitude": result.location.longitude,
            "formatted_label": result.location.formatted_label,
            "postal_code": result.location.postal_code,
            "source": result.location.source.value,
        },
        "radius_miles": result.radius_miles,
        "ranked": [w.to_row() for w in result.ranked],
        "excluded": [w.to_row() for w in result.excluded],
        "tier_counts": None,
        "generated_at": utc_now_iso(),
    }
    if result.tier_counts is not None:
        payload["tier_counts"] = {
            "within_5": result.tier_counts.within_5,
            "within_10": result.tier_counts.within_10,
            "within_20": result.tier_counts.within_20,
            "total": result.tier_counts.total,
        }
    with atomic_writer(path, mode="w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2)


def outcome_row(outcome: DispatchOutcome, attempted: bool) -> Dict[str, Any]:
    return {
        "person_id": outcome.person_id,
        "worker_profile_id": outcome.worker_profile_id,
        "status": outcome.status.value,
        "attempted": attempted,
        "error_detail": outcome.error_detail,
        "request_id": outcome.request_id,
        "timestamp": utc_now_iso(),
    }


def write_dispatch_log_jsonl(path: str, result: DispatchBatchResult) -> None:
    """Append one line per outcome to the dispatch log."""
    dir_path = os.path.dirname(path)
    if dir_path:
        ensure_dir(dir_path)
    with open(path, "a", encoding="utf-8") as f:
        for outcome in result.outcomes:
            f.write(json.dumps(outcome_row(outcome, True), ensure_ascii=False) + "\n")
        for outcome in result.skipped:
            f.write(json.dumps(outcome_row(outcome, False), ensure_ascii=False) + "\n")


def render_search_summary(result: SearchResult) -> List[str]:
    lines = [
        f"Location: {result.location.formatted_label} ({result.location.source.value})",
        f"Radius: {result.radius_miles:g} miles",
        f"Workers found: {len(result.ranked)}",
    ]
    if result.excluded:
        lines.append(f"Excluded (not yet eligible): {len(result.excluded)}")
    if result.tier_counts is not None:
        t = result.tier_counts
        lines.append(f"Within 5/10/20 miles: {t.within_5}/{t.within_10}/{t.within_20} (total {t.total})")
    for idx, worker in enumerate(result.ranked, start=1):
        lines.append(f"{idx:>3}. {worker.display_name or worker.person_id} - {worker.distance_miles:.1f} mi")
    return lines


def render_dispatch_summary(result: DispatchBatchResult) -> List[str]:
    lines = [result.summary()]
    for outcome in result.failures:
        lines.append(f"- failed {outcome.person_id}: {outcome.error_detail}")
    for outcome in result.skipped:
        lines.append(f"- skipped {outcome.person_id}: {outcome.error_detail}")
    return lines
