import logging
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

from assistant.logging_handlers import DateStampedFileHandler, cleanup_old_logs


def _age(path: Path, delta: timedelta) -> None:
    stamp = (datetime.now(timezone.utc) - delta).timestamp()
    os.utime(path, (stamp, stamp))


def test_date_stamped_file_handler_creates_expected_path(tmp_path) -> None:
    current = datetime(2024, 5, 26, 12, 34, 56, tzinfo=timezone.utc)
    handler = DateStampedFileHandler(
        tmp_path / "app",
        prefix="app",
        current_time=current,
    )
    try:
        expected_file = (
            tmp_path / "app" / "2024-05-26" / "app_2024-05-26_12-34-56_UTC.log"
        ).resolve()
        file_path = Path(handler.baseFilename)
        assert file_path == expected_file
        assert handler.log_path == expected_file
        assert file_path.exists()

        record = logging.LogRecord(
            name="test",
            level=logging.INFO,
            pathname=__file__,
            lineno=0,
            msg="hello world",
            args=(),
            exc_info=None,
        )
        handler.emit(record)

        assert "hello world" in file_path.read_text(encoding="utf-8")
    finally:
        handler.close()


def test_handler_normalizes_to_utc(tmp_path) -> None:
    offset = timezone(timedelta(hours=-5))
    current = datetime(2023, 1, 1, 22, 4, 5, tzinfo=offset)
    handler = DateStampedFileHandler(tmp_path, current_time=current, delay=True)
    try:
        assert handler.log_path.parent.name == "2023-01-02"
        assert handler.log_path.name == "assistant_2023-01-02_03-04-05_UTC.log"
    finally:
        handler.close()


def test_cleanup_old_logs(tmp_path) -> None:
    """Old log files are deleted based on retention hours."""
    log_dir = tmp_path / "logs" / "app"
    log_dir.mkdir(parents=True)

    old_file = log_dir / "old_log.log"
    old_file.write_text("old content")
    _age(old_file, timedelta(days=3))

    recent_file = log_dir / "recent_log.log"
    recent_file.write_text("recent content")
    _age(recent_file, timedelta(days=1))

    current_file = log_dir / "current_log.log"
    current_file.write_text("current content")

    files_deleted, errors = cleanup_old_logs([log_dir], retention_hours=48)

    assert files_deleted == 1
    assert errors == 0
    assert not old_file.exists()
    assert recent_file.exists()
    assert current_file.exists()


def test_cleanup_old_logs_disabled(tmp_path) -> None:
    log_dir = tmp_path / "logs" / "app"
    log_dir.mkdir(parents=True)
    old_file = log_dir / "old_log.log"
    old_file.write_text("content")
    _age(old_file, timedelta(days=100))

    assert cleanup_old_logs([log_dir], retention_hours=0) == (0, 0)
    assert old_file.exists()


def test_cleanup_old_logs_removes_empty_directories(tmp_path) -> None:
    log_dir = tmp_path / "logs" / "app"
    date_dir = log_dir / "2024-01-01"
    date_dir.mkdir(parents=True)
    old_file = date_dir / "old_log.log"
    old_file.write_text("content")
    _age(old_file, timedelta(days=100))

    files_deleted, _ = cleanup_old_logs([log_dir], retention_hours=48)

    assert files_deleted == 1
    assert not date_dir.exists()


def test_cleanup_skips_missing_directories(tmp_path) -> None:
    assert cleanup_old_logs([tmp_path / "missing"], retention_hours=1) == (0, 0)
