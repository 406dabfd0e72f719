import logging
import os

import pytest

from relay_backend.logging_utils import configure_logging, setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_old_log_files_are_pruned(tmp_path):
    for stamp in ("20240101_000000", "20240102_000000", "20240103_000000"):
        (tmp_path / f"relay_{stamp}.log").write_text("x")
    (tmp_path / "other.log").write_text("kept")

    path = setup_logging(str(tmp_path), "relay", max_files=2)

    remaining = sorted(os.listdir(tmp_path))
    assert remaining == ["other.log", "relay_20240103_000000.log"]
    assert os.path.basename(path).startswith("relay_")
    assert path.endswith(".log")


def test_log_directory_is_created(tmp_path):
    log_dir = tmp_path / "logs"

    setup_logging(str(log_dir), "relay")

    assert log_dir.is_dir()


def test_file_logging(tmp_path, restore_root_logger):
    path = configure_logging("INFO", str(tmp_path), "relay", 3)
    logging.getLogger("SwitcherState").info("Source 'Mic1' routed to 'Studio'")
    for handler in logging.getLogger().handlers:
        handler.flush()

    with open(path, encoding="utf-8") as f:
        assert "[SwitcherState] - Source 'Mic1' routed to 'Studio'" in f.read()


def test_console_only_logging(restore_root_logger):
    assert configure_logging("WARNING") is None
    assert logging.getLogger().level == logging.WARNING
