"""
Central Logging and Console Utilities.

Routes the engine's log output through the standard `logging` library,
formatted by `rich`. The destination console can be swapped at runtime via
`set_console` (e.g. an in-memory `Console(file=io.StringIO())` when an
embedding reporting layer wants to capture the log).

Attributes:
    logger (logging.Logger): The package logger ('unsafe_ledger').
"""

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

# Custom level between INFO and WARNING for run summaries.
SUCCESS_LEVEL_NUM = 25
logging.addLevelName(SUCCESS_LEVEL_NUM, "SUCCESS")

LOGGER_NAME = "unsafe_ledger"

_THEME = Theme(
  {
    "logging.level.success": "green",
    "info": "dim cyan",
    "warning": "yellow",
    "error": "bold red",
    "path": "bold blue",
  }
)

logger = logging.getLogger(LOGGER_NAME)

_console: Optional[Console] = None


def _install_handler(target: Console, level: int) -> None:
  """
  Replaces any RichHandler on the package logger with one bound to `target`.
  """
  for handler in list(logger.handlers):
    if isinstance(handler, RichHandler):
      logger.removeHandler(handler)

  rich_handler = RichHandler(
    console=target,
    show_time=False,
    omit_repeated_times=False,
    show_path=False,
    markup=True,
    rich_tracebacks=True,
  )
  logger.setLevel(level)
  logger.addHandler(rich_handler)


def configure_logging(console: Optional[Console] = None, level: int = logging.INFO) -> Console:
  """
  Attaches a rich handler to the package logger.

  Args:
      console: Destination console. A themed stderr console is created if None.
      level: Minimum level to emit.

  Returns:
      Console: The console now receiving log output.
  """
  global _console
  _console = console or Console(theme=_THEME, stderr=True)
  _install_handler(_console, level)
  return _console


def set_console(new_console: Console) -> None:
  """
  Redirects log output to a specific console, keeping the current level.

  Args:
      new_console: The configured Rich console to use.
  """
  configure_logging(new_console, logger.level or logging.INFO)


def get_console() -> Console:
  """
  Retrieves the active console, configuring the default one on first use.

  Returns:
      Console: The active Rich Console.
  """
  if _console is None:
    return configure_logging()
  return _console


def log_info(msg: str) -> None:
  """Logs an informational message."""
  logger.info(msg, extra={"markup": True})


def log_success(msg: str) -> None:
  """Logs a run-summary message at the SUCCESS level."""
  logger.log(SUCCESS_LEVEL_NUM, msg, extra={"markup": True})


def log_warning(msg: str) -> None:
  """Logs a warning message."""
  logger.warning(msg, extra={"markup": True})


def log_error(msg: str) -> None:
  """Logs an error message."""
  logger.error(msg, extra={"markup": True})
