from __future__ import annotations

import logging
from pathlib import Path

import pytest

from quorumcall.logging_cfg import setup_from_env


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    yield root
    for h in root.handlers[:]:
        root.removeHandler(h)
        h.close()
    for h in saved_handlers:
        root.addHandler(h)
    root.setLevel(saved_level)


def test_env_selects_level_and_file(tmp_path: Path, monkeypatch, restore_root_logger):
    monkeypatch.setenv("QUORUMCALL_LOG_LEVEL", "debug")
    monkeypatch.setenv("QUORUMCALL_LOG_DIR", str(tmp_path / "logs"))
    path = setup_from_env()
    assert restore_root_logger.level == logging.DEBUG
    assert path is not None and path.parent == tmp_path / "logs"
    assert path.name.startswith("quorumcall_")

    logging.getLogger("quorumcall.test").info("Request created: req-1")
    for h in restore_root_logger.handlers:
        h.flush()
    assert "Request created: req-1" in path.read_text()


def test_unknown_level_falls_back_to_info(monkeypatch, restore_root_logger):
    monkeypatch.setenv("QUORUMCALL_LOG_LEVEL", "chatty")
    monkeypatch.delenv("QUORUMCALL_LOG_DIR", raising=False)
    assert setup_from_env() is None
    assert restore_root_logger.level == logging.INFO
