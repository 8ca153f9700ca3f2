"""
Orchestration Engine for Soundness Analysis.

This module provides the `LedgerEngine`, the primary driver of an analysis run.
It wires the components together over one immutable crate snapshot.

The Engine pipeline consists of:

1.  **Ingestion Phase**: validates the input mapping into a `CrateSnapshot`
    and builds the frozen `ItemModel` (malformed requirements recorded).
2.  **Visibility Phase**: resolves scopes for every entity.
3.  **Obligation Phase**: builds the `ObligationGraph` and the callee-first
    order. A cycle aborts the run here.
4.  **Classification Phase**: the `SoundnessChecker` assigns a terminal state
    to every entity and collects findings.

The engine never raises for bad input: structural faults and cycles become an
unsuccessful `AnalysisResult`.
"""

from typing import Optional, Union

from pydantic import ValidationError
from rich.markup import escape

from unsafe_ledger.analysis.checker import SoundnessChecker
from unsafe_ledger.analysis.diagnostics import DiagnosticsCollector
from unsafe_ledger.analysis.obligations import ObligationGraphBuilder
from unsafe_ledger.analysis.visibility import VisibilityResolver
from unsafe_ledger.config import AnalysisConfig
from unsafe_ledger.core.analysis_result import AnalysisResult
from unsafe_ledger.enums import RuleId, Severity, TerminalState
from unsafe_ledger.errors import CyclicObligationError, LedgerError
from unsafe_ledger.model.builder import ItemModelBuilder
from unsafe_ledger.model.items import ItemModel
from unsafe_ledger.model.schema import CrateSnapshot
from unsafe_ledger.utils.console import log_error, log_info, log_success, log_warning

SnapshotLike = Union[CrateSnapshot, ItemModel, dict]


class LedgerEngine:
  """
  The main analysis unit.

  Runs are independent: the engine holds only its configuration, so the same
  engine may analyze many snapshots and re-running on one snapshot yields
  identical results.
  """

  def __init__(self, config: Optional[AnalysisConfig] = None):
    """
    Initializes the Engine.

    Args:
        config (AnalysisConfig, optional): Run configuration. Defaults are used if None.
    """
    self.config = config or AnalysisConfig()

  def run(self, snapshot: SnapshotLike) -> AnalysisResult:
    """
    Executes the analysis pipeline.

    Args:
        snapshot: A `CrateSnapshot`, a mapping validated into one, or an
            already-built `ItemModel`.

    Returns:
        AnalysisResult: States, findings and run-level errors.
    """
    criterion = self.config.criterion.value

    # 1. Ingestion
    try:
      if isinstance(snapshot, ItemModel):
        model = snapshot
      else:
        model = ItemModelBuilder(self.config).build(snapshot)
    except ValidationError as e:
      log_error(f"Snapshot validation failed: {e.error_count()} error(s)")
      return AnalysisResult(criterion=criterion, success=False, errors=[f"Snapshot Error: {e}"])
    except LedgerError as e:
      log_error(f"Model Error: {escape(str(e))}")
      return AnalysisResult(criterion=criterion, success=False, errors=[f"Model Error: {e}"])

    log_info(
      f"Analyzing [path]{escape(model.crate)}[/path] under the {criterion}-level criterion "
      f"({len(model.items)} items, {len(model.structs)} structs, {len(model.traits)} traits)"
    )
    if model.issues:
      log_warning(f"{len(model.issues)} malformed requirement(s) recorded")

    # 2. Visibility
    resolver = VisibilityResolver(model)

    # 3. Obligations
    try:
      graph = ObligationGraphBuilder(model, self.config).build()
    except CyclicObligationError as e:
      log_error(escape(str(e)))
      collector = DiagnosticsCollector()
      collector.add(
        model.crate,
        TerminalState.CYCLIC_OBLIGATION,
        RuleId.CYCLIC_OBLIGATION,
        f"obligation graph contains a cycle: {' -> '.join(e.cycle)}",
        Severity.FATAL,
      )
      return AnalysisResult(
        crate=model.crate,
        criterion=criterion,
        success=False,
        findings=collector.findings(),
        errors=[str(e)],
      )

    # 4. Classification
    collector = DiagnosticsCollector(model.declaration_order)
    states = SoundnessChecker(model, graph, resolver, self.config, collector).run()

    result = AnalysisResult(
      crate=model.crate,
      criterion=criterion,
      states=states,
      findings=collector.findings(),
    )
    violated = sum(1 for state in states.values() if not state.is_sound)
    if violated:
      log_warning(f"{violated} of {len(states)} entities violate the safety rules")
    else:
      log_success(f"All {len(states)} entities are sound")
    return result
