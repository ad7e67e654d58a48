"""
Age-based cleanup of transient artifacts.

Only files whose modification time is older than the threshold are deleted,
so anything an in-flight request is still writing survives a sweep.
"""

import threading
import time
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from ..config import DirectorySettings, RetentionSettings
from ..utils.logger import logger


@dataclass
class PurgeResult:
    scanned: int = 0
    removed: List[Path] = field(default_factory=list)
    failed: List[Path] = field(default_factory=list)

    @property
    def removed_count(self) -> int:
        return len(self.removed)

    def extend(self, other: "PurgeResult") -> "PurgeResult":
        self.scanned += other.scanned
        self.removed.extend(other.removed)
        self.failed.extend(other.failed)
        return self

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["removed"] = [str(p) for p in self.removed]
        data["failed"] = [str(p) for p in self.failed]
        return data


def purge_expired(directories: Iterable[Path], max_age: timedelta,
                  pattern: str = "*", now: Optional[datetime] = None) -> PurgeResult:
    """
    Delete files under `directories` (recursively) older than `max_age`.

    Missing directories are ignored. A file that vanishes during the sweep
    is skipped; one that cannot be deleted is logged and reported in
    `PurgeResult.failed`.
    """
    cutoff = (now or datetime.now()) - max_age
    cutoff_ts = cutoff.timestamp()
    result = PurgeResult()

    for directory in directories:
        directory = Path(directory)
        if not directory.is_dir():
            continue

        for path in directory.rglob(pattern):
            try:
                if not path.is_file():
                    continue
                result.scanned += 1
                if path.stat().st_mtime >= cutoff_ts:
                    continue
                path.unlink()
                result.removed.append(path)
                logger.debug(f"Deleted expired file '{path}'")
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"Could not delete '{path}': {e}")
                result.failed.append(path)

    if result.removed:
        logger.info(f"Retention sweep removed {result.removed_count} file(s) older than {max_age}")
    return result


class RetentionSweeper:
    """
    Periodic cleanup on a daemon thread.

    Each cycle purges previews (short retention) and temp/output files
    (long retention). After a failed cycle the next one runs sooner.
    """

    def __init__(self, settings: Optional[RetentionSettings] = None,
                 directories: Optional[DirectorySettings] = None):
        self.settings = settings or RetentionSettings()
        self.directories = directories or DirectorySettings()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def sweep_once(self, now: Optional[datetime] = None) -> PurgeResult:
        result = purge_expired(
            [Path(self.directories.previews)],
            timedelta(hours=self.settings.preview_max_age_hours),
            pattern=self.settings.preview_pattern,
            now=now,
        )
        result.extend(purge_expired(
            [Path(self.directories.temp), Path(self.directories.output)],
            timedelta(hours=self.settings.temp_max_age_hours),
            now=now,
        ))
        return result

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="retention-sweeper", daemon=True)
        self._thread.start()
        logger.info(f"Retention sweeper started (every {self.settings.interval_minutes} min)")

    def stop(self, timeout: float = 5) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        while not self._stop.is_set():
            started = time.monotonic()
            try:
                self.sweep_once()
                wait = self.settings.interval_minutes * 60
            except Exception as e:
                logger.error(f"Retention sweep failed: {e}")
                wait = self.settings.retry_minutes * 60
            self._stop.wait(max(0.0, wait - (time.monotonic() - started)))
