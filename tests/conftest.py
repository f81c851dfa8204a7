"""Shared test fixtures."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

import pytest

from rel4_installer.build_config import BuildConfig, resolve_options
from fakes import RecordingRunner


@pytest.fixture
def runner() -> RecordingRunner:
    return RecordingRunner()


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., BuildConfig]:
    """resolve_options() with staging and prefix kept under tmp_path."""

    def _make(**options) -> BuildConfig:
        options.setdefault("staging_root", str(tmp_path / "staging"))
        options.setdefault("sel4_prefix", str(tmp_path / "prefix"))
        return resolve_options(**options)

    return _make


@pytest.fixture(autouse=True)
def _reset_root_logging():
    root = logging.getLogger()
    before = set(root.handlers)
    yield
    for h in list(root.handlers):
        if h not in before and type(h) in (logging.FileHandler, logging.StreamHandler):
            root.removeHandler(h)
            h.close()
    for attr in ("_rel4_log_path", "_rel4_console"):
        if hasattr(root, attr):
            delattr(root, attr)
