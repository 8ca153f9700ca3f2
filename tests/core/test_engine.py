"""
Tests for the Ledger Engine.

Verifies:
1.  **Input forms**: mappings, validated snapshots and prebuilt models.
2.  **Failure modes**: invalid snapshots, inconsistent models and cycles never raise.
3.  **Result surface**: records, soundness summary and the `analyze` wrapper.
"""

import unsafe_ledger
from tests.crate_builders import call, fn, snapshot, struct
from unsafe_ledger import AnalysisConfig, CrateSnapshot, LedgerEngine, RuleId, Severity, TerminalState
from unsafe_ledger.model.builder import ItemModelBuilder

FOO = fn("crate::foo", unsafe=True, params=["p"], requirements=["valid_for_reads(p)", "aligned(p)"])
BAR = fn(
  "crate::bar",
  params=["p"],
  body=[call("crate::foo", "p", justification="SAFETY: valid_for_reads(p): live\naligned(p): from a reference")],
)


def test_run_on_mapping():
  result = LedgerEngine().run(snapshot(FOO, BAR))
  assert result.success
  assert result.crate == "demo"
  assert result.criterion == "module"
  assert result.states == {"crate::foo": TerminalState.SOUND_UNSAFE, "crate::bar": TerminalState.SOUND_SAFE}
  assert result.is_sound
  assert not result.has_errors


def test_run_on_snapshot_and_model_agree():
  raw = snapshot(FOO, fn("crate::bar", params=["p"], body=[call("crate::foo", "p")]))
  engine = LedgerEngine()
  from_snapshot = engine.run(CrateSnapshot.model_validate(raw))
  from_model = engine.run(ItemModelBuilder().build(raw))
  assert from_snapshot.records() == from_model.records()
  assert from_snapshot.state_of("crate::bar") == TerminalState.CLASSIFICATION_VIOLATION


def test_records_shape():
  result = LedgerEngine().run(snapshot(FOO, fn("crate::bar", params=["p"], body=[call("crate::foo", "p")])))
  records = result.records()
  assert [(path, state, rule) for path, state, rule, _ in records] == [
    ("crate::bar", TerminalState.SOUND_SAFE, RuleId.RECOMMENDED_SAFETY_COMMENT),
    ("crate::bar", TerminalState.CLASSIFICATION_VIOLATION, RuleId.FUNCTION_SAFETY_1),
  ]
  assert [f.rule for f in result.violations] == [RuleId.FUNCTION_SAFETY_1]
  assert not result.is_sound


def test_invalid_snapshot_is_reported():
  result = LedgerEngine().run({"name": "demo", "items": [{"kind": "function"}]})
  assert not result.success
  assert result.errors[0].startswith("Snapshot Error:")
  assert result.states == {}


def test_inconsistent_model_is_reported():
  result = LedgerEngine().run(snapshot(fn("crate::f"), fn("crate::f")))
  assert not result.success
  assert result.errors[0].startswith("Model Error:")
  assert "Duplicate item path" in result.errors[0]


def test_strict_requirements_abort_the_run():
  engine = LedgerEngine(AnalysisConfig(strict_requirements=True))
  result = engine.run(snapshot(fn("crate::f", unsafe=True, requirements=["valid_for_reads(tmp)"])))
  assert not result.success
  assert "tmp" in result.errors[0]


def test_cycle_aborts_with_one_fatal_finding():
  result = LedgerEngine().run(
    snapshot(fn("crate::a", body=[call("crate::b")]), fn("crate::b", body=[call("crate::a")]), struct("crate::S", []))
  )
  assert not result.success
  assert result.states == {}
  assert result.errors == ["Cyclic obligation: crate::a -> crate::b -> crate::a"]
  (finding,) = result.findings
  assert finding.path == "demo"
  assert finding.state == TerminalState.CYCLIC_OBLIGATION
  assert finding.rule == RuleId.CYCLIC_OBLIGATION
  assert finding.severity == Severity.FATAL
  assert finding.explanation == "obligation graph contains a cycle: crate::a -> crate::b -> crate::a"


def test_engine_is_reusable():
  engine = LedgerEngine()
  first = engine.run(snapshot(FOO, BAR))
  engine.run(snapshot(fn("crate::x", unsafe=True)))
  assert engine.run(snapshot(FOO, BAR)).records() == first.records()


def test_analyze_wrapper():
  result = unsafe_ledger.analyze(snapshot(FOO, BAR), criterion="Crate-Level")
  assert result.criterion == "crate"
  assert result.is_sound


def test_analyze_with_config_ignores_criterion():
  config = AnalysisConfig(criterion="struct", report_recommended=False)
  result = unsafe_ledger.analyze(snapshot(FOO), criterion="crate", config=config)
  assert result.criterion == "struct"
