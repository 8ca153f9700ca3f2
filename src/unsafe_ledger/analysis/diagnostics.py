"""
Diagnostics Collector.

Accumulates findings produced by the checker and exposes them in item
declaration order. Nothing is filtered or deduplicated; the external
reporting layer decides what to show.
"""

from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from unsafe_ledger.enums import RuleId, Severity, TerminalState

Record = Tuple[str, TerminalState, RuleId, str]


class Finding(BaseModel):
  """
  One violated (or recommended) rule for one item.
  """

  model_config = ConfigDict(frozen=True)

  path: str = Field(..., description="Path of the originating item.")
  state: TerminalState = Field(..., description="Terminal state the finding implies.")
  rule: RuleId = Field(..., description="Identifier of the violated rule.")
  explanation: str = Field("", description="Human readable reason.")
  severity: Severity = Field(Severity.VIOLATION, description="Violation, recommendation or run-level failure.")
  line: Optional[int] = Field(None, description="Source line of the offending site, when known.")

  def as_record(self) -> Record:
    return (self.path, self.state, self.rule, self.explanation)


class DiagnosticsCollector:
  """
  Ordered store of findings.

  Attributes:
      order (Dict[str, int]): Declaration index per item path. Unknown paths
          (run-level findings) sort first.
  """

  def __init__(self, order: Optional[Dict[str, int]] = None):
    self.order = dict(order or {})
    self._findings: List[Finding] = []

  def add(
    self,
    path: str,
    state: TerminalState,
    rule: RuleId,
    explanation: str,
    severity: Severity = Severity.VIOLATION,
    line: Optional[int] = None,
  ) -> Finding:
    """
    Records a finding.

    Args:
        path: Originating item path.
        state: Implied terminal state.
        rule: Violated rule.
        explanation: Reason text.
        severity: Finding severity.
        line: Optional source line.

    Returns:
        Finding: The stored finding.
    """
    finding = Finding(path=path, state=state, rule=rule, explanation=explanation, severity=severity, line=line)
    self._findings.append(finding)
    return finding

  def findings(self) -> List[Finding]:
    """
    Returns findings sorted stably by declaration order of their item.
    """
    return sorted(self._findings, key=lambda f: self.order.get(f.path, -1))

  def records(self) -> List[Record]:
    """
    Returns ``(path, state, rule, explanation)`` tuples in finding order.
    """
    return [f.as_record() for f in self.findings()]

  def for_path(self, path: str) -> List[Finding]:
    # Same order as `findings()`: one path has one sort key.
    return [f for f in self._findings if f.path == path]

  def violations(self) -> List[Finding]:
    return [f for f in self.findings() if f.severity != Severity.RECOMMENDED]

  def __len__(self) -> int:
    return len(self._findings)
