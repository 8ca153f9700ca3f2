"""
Tests for logging utilities.
"""

import io
import logging

import pytest
from rich.console import Console
from rich.logging import RichHandler

from tests.crate_builders import call, fn, snapshot
from unsafe_ledger.core.engine import LedgerEngine
from unsafe_ledger.utils import console as console_mod
from unsafe_ledger.utils.console import (
  configure_logging,
  get_console,
  log_error,
  log_info,
  log_success,
  log_warning,
  set_console,
)


@pytest.fixture
def captured():
  buffer = io.StringIO()
  configure_logging(Console(file=buffer, width=200), logging.INFO)
  yield buffer
  configure_logging(Console(file=io.StringIO()), logging.WARNING)


def test_messages_reach_the_console(captured):
  log_info("loading crate")
  log_success("all sound")
  log_warning("1 violation")
  log_error("broken")
  text = captured.getvalue()
  assert "loading crate" in text
  assert "SUCCESS" in text
  assert "all sound" in text
  assert "1 violation" in text
  assert "broken" in text


def test_single_rich_handler_after_reconfiguration(captured):
  set_console(Console(file=io.StringIO()))
  set_console(Console(file=captured, width=200))
  handlers = [h for h in console_mod.logger.handlers if isinstance(h, RichHandler)]
  assert len(handlers) == 1
  assert get_console().file is captured


def test_level_filters_messages(captured):
  console_mod.logger.setLevel(logging.WARNING)
  log_info("hidden")
  log_warning("shown")
  assert "hidden" not in captured.getvalue()
  assert "shown" in captured.getvalue()


def test_engine_logs_unresolved_callees(captured):
  LedgerEngine().run(snapshot(fn("crate::f", body=[call("std::[weird]", "p")])))
  text = captured.getvalue()
  assert "crate::f" in text
  assert "std::[weird]" in text
