"""
Exception hierarchy.

All engine errors derive from `ValueError` so callers that only guard against
bad input keep working.
"""

from typing import List, Optional


class LedgerError(ValueError):
  """Base class for unsafe-ledger errors."""


class ModelError(LedgerError):
  """
  Raised when a crate snapshot is structurally inconsistent
  (duplicate paths, unknown modules or owners).
  """


class MalformedRequirementError(LedgerError):
  """
  Raised in strict mode when a requirement references an identifier
  that is not visible at its declaration site.
  """

  def __init__(self, path: str, requirement: str, identifiers: List[str]):
    self.path = path
    self.requirement = requirement
    self.identifiers = identifiers
    names = ", ".join(identifiers)
    super().__init__(f"{path}: requirement '{requirement}' references non-visible identifier(s): {names}")


class CyclicObligationError(LedgerError):
  """
  Raised when the obligation graph contains a cycle among items.
  Discharge order is undefined for such graphs, so the whole run aborts.
  """

  def __init__(self, cycle: List[str], message: Optional[str] = None):
    self.cycle = cycle
    super().__init__(message or f"Cyclic obligation: {' -> '.join(cycle)}")
