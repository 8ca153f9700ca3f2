"""
Data structures representing the output of an analysis run.

This module defines the `AnalysisResult` Pydantic model, which carries the
terminal state of every entity, the ordered findings and any run-level errors.
"""

from typing import Dict, List

from pydantic import BaseModel, Field

from unsafe_ledger.analysis.diagnostics import Finding, Record
from unsafe_ledger.enums import Severity, TerminalState


class AnalysisResult(BaseModel):
  """
  Container for the results of one soundness analysis.
  """

  crate: str = Field(default="crate", description="Name of the analyzed crate.")
  criterion: str = Field(default="module", description="Soundness criterion the run used.")
  states: Dict[str, TerminalState] = Field(
    default_factory=dict,
    description="Terminal state per entity path, in declaration order.",
  )
  findings: List[Finding] = Field(default_factory=list, description="Findings in declaration order.")
  errors: List[str] = Field(default_factory=list, description="Run-level error messages.")
  success: bool = Field(
    default=True,
    description="False if the run aborted (cyclic obligations, inconsistent snapshot).",
  )

  @property
  def has_errors(self) -> bool:
    """
    Check if the result contains any error messages.

    Returns:
        True if one or more errors are present.
    """
    return len(self.errors) > 0

  @property
  def violations(self) -> List[Finding]:
    """Findings that are not recommendations."""
    return [f for f in self.findings if f.severity != Severity.RECOMMENDED]

  @property
  def is_sound(self) -> bool:
    """True if the run completed and every entity ended in a sound state."""
    return self.success and all(state.is_sound for state in self.states.values())

  def records(self) -> List[Record]:
    """
    Returns the ``(path, state, rule, explanation)`` sequence consumed by
    reporting layers.
    """
    return [f.as_record() for f in self.findings]

  def state_of(self, path: str) -> TerminalState:
    return self.states[path]
