"""Retention sweep over the job root."""

from __future__ import annotations

import logging
import shutil
import stat
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE_DAYS = 7


@dataclass
class CleanupResult:
    scanned: int = 0
    removed: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


def cleanup_old_jobs(root: Path, max_age_days: float = DEFAULT_MAX_AGE_DAYS, *, now: Optional[float] = None) -> CleanupResult:
    """Delete job directories under ``root`` last modified more than ``max_age_days`` ago.

    Every entry directly under the root is counted. Only real directories
    sitting directly under the resolved root are removed; symlinks and
    anything else old enough to qualify are reported instead. A failing entry is
    recorded and the sweep moves on.
    """
    result = CleanupResult()
    cutoff = (now if now is not None else time.time()) - max_age_days * 24 * 60 * 60

    try:
        root_resolved = Path(root).resolve(strict=True)
        entries = sorted(root_resolved.iterdir())
    except OSError as exc:
        result.errors.append(f"Failed to read directory {root}: {exc}")
        logger.error("[reaper] unreadable root=%s error=%s", root, exc)
        return result

    for entry in entries:
        result.scanned += 1
        try:
            info = entry.stat()
            if not stat.S_ISDIR(info.st_mode):
                continue
            if info.st_mtime >= cutoff:
                continue
            resolved = entry.resolve()
            if entry.is_symlink() or resolved.parent != root_resolved:
                result.errors.append(f"Skipped suspicious path: {entry}")
                logger.warning("[reaper] skip path=%s resolved=%s", entry, resolved)
                continue
            shutil.rmtree(resolved)
            result.removed.append(entry.name)
        except OSError as exc:
            result.errors.append(f"Error processing {entry.name}: {exc}")

    logger.info(
        "[reaper] sweep root=%s scanned=%d removed=%d errors=%d",
        root_resolved,
        result.scanned,
        len(result.removed),
        len(result.errors),
    )
    return result


__all__ = ["CleanupResult", "DEFAULT_MAX_AGE_DAYS", "cleanup_old_jobs"]
