"""
unsafe-ledger Package.

A soundness-classification and discharge-verification engine for Rust-like
crates. Given a front-end snapshot of a crate's items, their visibility, the
unsafe operations in their bodies and their documented safety requirements,
it decides for every item whether its ``unsafe`` marking and its safety
contract are correct under a struct-, module- or crate-level soundness
criterion.

Usage
-----

Simple Analysis
^^^^^^^^^^^^^^^

.. code-block:: python

    import unsafe_ledger as ul

    snapshot = {
        "name": "demo",
        "items": [
            {"path": "crate::foo", "unsafe": True, "params": ["p"],
             "requirements": ["valid_for_reads(p)", "aligned(p)"]},
            {"path": "crate::bar", "params": ["p"],
             "body": [{"op": "call", "target": "crate::foo", "args": ["p"],
                       "justification": "SAFETY: valid_for_reads(p): from a reference; aligned(p): same"}]},
        ],
    }
    result = ul.analyze(snapshot)
    for path, state, rule, explanation in result.records():
        print(path, state.value, rule.value, explanation)

Advanced Usage (Engine)
^^^^^^^^^^^^^^^^^^^^^^^

.. code-block:: python

    from unsafe_ledger import AnalysisConfig, LedgerEngine

    engine = LedgerEngine(AnalysisConfig(criterion="struct", report_recommended=False))
    res = engine.run(snapshot)
    if not res.success:
        print(res.errors)
"""

from typing import Optional, Union

from unsafe_ledger.config import AnalysisConfig
from unsafe_ledger.core.analysis_result import AnalysisResult
from unsafe_ledger.core.engine import LedgerEngine
from unsafe_ledger.enums import RuleId, Severity, SoundnessCriterion, TerminalState
from unsafe_ledger.errors import CyclicObligationError, LedgerError, MalformedRequirementError, ModelError
from unsafe_ledger.model.schema import CrateSnapshot

__version__ = "0.1.0"


def analyze(
  snapshot: Union[CrateSnapshot, dict],
  criterion: Union[SoundnessCriterion, str] = SoundnessCriterion.MODULE,
  config: Optional[AnalysisConfig] = None,
) -> AnalysisResult:
  """
  Analyzes one crate snapshot.

  This is a convenience wrapper around `LedgerEngine`.

  Args:
      snapshot (CrateSnapshot | dict): The crate snapshot.
      criterion (str): 'struct', 'module' or 'crate'. Ignored if `config` is given.
      config (AnalysisConfig, optional): Full run configuration.

  Returns:
      AnalysisResult: Terminal states and findings.
  """
  if config is None:
    config = AnalysisConfig(criterion=criterion)
  return LedgerEngine(config).run(snapshot)


__all__ = [
  "AnalysisConfig",
  "AnalysisResult",
  "CrateSnapshot",
  "CyclicObligationError",
  "LedgerEngine",
  "LedgerError",
  "MalformedRequirementError",
  "ModelError",
  "RuleId",
  "Severity",
  "SoundnessCriterion",
  "TerminalState",
  "analyze",
  "__version__",
]
