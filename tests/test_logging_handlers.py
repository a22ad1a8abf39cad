import logging
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

from voice_relay.logging_handlers import DateStampedFileHandler, cleanup_old_logs


def test_date_stamped_file_handler_creates_expected_path(tmp_path: Path) -> None:
    current = datetime(2024, 5, 26, 12, 34, 56, tzinfo=timezone.utc)
    handler = DateStampedFileHandler(
        tmp_path / "app",
        prefix="relay",
        tz=timezone.utc,
        current_time=current,
    )
    try:
        expected = (tmp_path / "app" / "2024-05-26" / "relay_2024-05-26_12-34-56_UTC.log").resolve()
        file_path = Path(handler.baseFilename)
        assert file_path == expected
        assert file_path.exists()

        record = logging.LogRecord(
            name="test",
            level=logging.INFO,
            pathname=__file__,
            lineno=0,
            msg="session opened",
            args=(),
            exc_info=None,
        )
        handler.emit(record)

        assert "session opened" in file_path.read_text(encoding="utf-8")
    finally:
        handler.close()


def test_delayed_handler_creates_folder_but_not_file(tmp_path: Path) -> None:
    current = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    handler = DateStampedFileHandler(
        tmp_path, tz=timezone.utc, current_time=current, delay=True
    )
    try:
        file_path = Path(handler.baseFilename)
        assert file_path.parent.is_dir()
        assert not file_path.exists()
        assert file_path.name.startswith("relay_2024-01-02_03-04-05")
    finally:
        handler.close()


def test_cleanup_old_logs_removes_expired_files(tmp_path: Path) -> None:
    now = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)
    old_dir = tmp_path / "voice" / "2024-05-20"
    new_dir = tmp_path / "voice" / "2024-06-01"
    old_dir.mkdir(parents=True)
    new_dir.mkdir(parents=True)

    old_file = old_dir / "voice_old.log"
    new_file = new_dir / "voice_new.log"
    keep_other = new_dir / "notes.txt"
    for path in (old_file, new_file, keep_other):
        path.write_text("x")

    old_ts = (now - timedelta(hours=100)).timestamp()
    new_ts = (now - timedelta(hours=1)).timestamp()
    os.utime(old_file, (old_ts, old_ts))
    os.utime(new_file, (new_ts, new_ts))

    deleted, errors = cleanup_old_logs([tmp_path / "voice"], retention_hours=48, now=now)

    assert (deleted, errors) == (1, 0)
    assert not old_file.exists()
    assert not old_dir.exists()
    assert new_file.exists()
    assert keep_other.exists()


def test_cleanup_disabled_or_missing_directory(tmp_path: Path) -> None:
    assert cleanup_old_logs([tmp_path], retention_hours=0) == (0, 0)
    assert cleanup_old_logs([tmp_path / "missing"], retention_hours=24) == (0, 0)
