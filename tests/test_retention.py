import os
import time
from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import patch

from sheet2pdf.config import DirectorySettings, RetentionSettings
from sheet2pdf.core.retention import PurgeResult, RetentionSweeper, purge_expired


def touch(path: Path, age: timedelta) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"x")
    stamp = (datetime.now() - age).timestamp()
    os.utime(path, (stamp, stamp))
    return path


def test_purge_removes_only_expired_files(tmp_path):
    old = touch(tmp_path / "old.pdf", timedelta(hours=3))
    nested = touch(tmp_path / "sub" / "older.xlsx", timedelta(days=2))
    fresh = touch(tmp_path / "fresh.pdf", timedelta(minutes=5))

    result = purge_expired([tmp_path], timedelta(hours=2))

    assert sorted(result.removed) == sorted([old, nested])
    assert result.scanned == 3
    assert fresh.exists()
    assert not old.exists()


def test_purge_respects_pattern(tmp_path):
    pdf = touch(tmp_path / "a.pdf", timedelta(hours=5))
    xlsx = touch(tmp_path / "a.xlsx", timedelta(hours=5))

    result = purge_expired([tmp_path], timedelta(hours=2), pattern="*.pdf")

    assert result.removed == [pdf]
    assert xlsx.exists()


def test_purge_uses_reference_time(tmp_path):
    recent = touch(tmp_path / "a.pdf", timedelta(minutes=1))
    later = datetime.now() + timedelta(hours=3)

    result = purge_expired([tmp_path], timedelta(hours=2), now=later)

    assert result.removed == [recent]


def test_purge_ignores_missing_directory(tmp_path):
    result = purge_expired([tmp_path / "missing"], timedelta(hours=1))
    assert result.scanned == 0
    assert result.removed_count == 0


def test_purge_reports_undeletable_files(tmp_path):
    locked = touch(tmp_path / "locked.pdf", timedelta(hours=5))

    with patch.object(Path, "unlink", side_effect=PermissionError("in use")):
        result = purge_expired([tmp_path], timedelta(hours=1))

    assert result.failed == [locked]
    assert result.removed == []
    assert locked.exists()


def test_purge_result_merge_and_dict():
    first = PurgeResult(scanned=2, removed=[Path("a")])
    first.extend(PurgeResult(scanned=1, failed=[Path("b")]))

    assert first.scanned == 3
    assert first.to_dict() == {"scanned": 3, "removed": ["a"], "failed": ["b"]}


def test_sweep_once_applies_per_directory_retention(tmp_path):
    dirs = DirectorySettings(
        temp=str(tmp_path / "temp"),
        output=str(tmp_path / "output"),
        previews=str(tmp_path / "previews"),
        corpus=str(tmp_path / "corpus"),
    )
    preview = touch(tmp_path / "previews" / "p.pdf", timedelta(hours=3))
    preview_png = touch(tmp_path / "previews" / "p.png", timedelta(hours=3))
    temp_recent = touch(tmp_path / "temp" / "t.xlsx", timedelta(hours=3))
    temp_old = touch(tmp_path / "temp" / "old.xlsx", timedelta(hours=30))
    output_old = touch(tmp_path / "output" / "o.pdf", timedelta(hours=30))
    corpus_old = touch(tmp_path / "corpus" / "c.pdf", timedelta(days=30))

    result = RetentionSweeper(RetentionSettings(), dirs).sweep_once()

    assert sorted(result.removed) == sorted([preview, temp_old, output_old])
    assert preview_png.exists()
    assert temp_recent.exists()
    # corpus is never swept
    assert corpus_old.exists()


def test_sweeper_start_and_stop(tmp_path):
    dirs = DirectorySettings(temp=str(tmp_path / "t"), output=str(tmp_path / "o"),
                             previews=str(tmp_path / "p"), corpus=str(tmp_path / "c"))
    old = touch(tmp_path / "t" / "old.xlsx", timedelta(days=3))
    sweeper = RetentionSweeper(RetentionSettings(interval_minutes=60), dirs)

    sweeper.start()
    assert sweeper.running
    deadline = time.monotonic() + 5
    while old.exists() and time.monotonic() < deadline:
        time.sleep(0.05)
    sweeper.stop()

    assert not old.exists()
    assert not sweeper.running


def test_sweeper_survives_failed_cycle(tmp_path):
    sweeper = RetentionSweeper(RetentionSettings(interval_minutes=60, retry_minutes=60))
    with patch.object(RetentionSweeper, "sweep_once", side_effect=RuntimeError("disk gone")) as mock_sweep:
        sweeper.start()
        deadline = time.monotonic() + 5
        while not mock_sweep.called and time.monotonic() < deadline:
            time.sleep(0.05)
        assert sweeper.running
        sweeper.stop()
    mock_sweep.assert_called_once()
