"""
Soundness Checker.

Classifies every entity of the Item Model into exactly one `TerminalState`,
processing function-like items callee-first so callers rely on the declared
contracts of what they call.

For each item:

1.  **Discharge**: every outstanding obligation of its body is checked against
    the assumptions available at the site. For each satisfiable combination
    of a guard disjunct and a disjunct of the item's own documented contract
    (plus the type invariant, for receivers of an invariant-carrying struct),
    the assumptions must entail some outstanding alternative. Combinations
    refuted by the guard are ignored.
2.  **Propagation**: uncovered obligations become required of the item. The
    final requirement set (documented plus propagated) decides whether the
    item must be declared ``unsafe``.
3.  **Struct internals**: literals and field writes are checked against the
    soundness boundary of the struct under the run's criterion.
4.  **Traits**: trait unsafety versus invariant, impl unsafety versus trait,
    and implementations checked only for contract strengthening.

All findings go to the `DiagnosticsCollector`; when several violations apply
to one item the state is chosen by `STATE_PRECEDENCE`.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from unsafe_ledger.analysis.diagnostics import DiagnosticsCollector
from unsafe_ledger.analysis.obligations import ObligationEdge, ObligationGraph
from unsafe_ledger.analysis.visibility import VisibilityResolver
from unsafe_ledger.config import AnalysisConfig
from unsafe_ledger.enums import STATE_PRECEDENCE, RuleId, Severity, TerminalState
from unsafe_ledger.model.builder import invisible_identifiers
from unsafe_ledger.model.items import Item, ItemModel, Struct, Trait, TraitImpl
from unsafe_ledger.model.logic import first_uncovered, satisfiable
from unsafe_ledger.model.predicates import EMPTY, Requirement, RequirementSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Obligation:
  """
  An obligation the site's assumptions do not cover.
  """

  edge: ObligationEdge
  missing: Tuple[Requirement, ...]
  rule: RuleId
  state: TerminalState = TerminalState.CLASSIFICATION_VIOLATION
  propagate: bool = True

  @property
  def text(self) -> str:
    return " and ".join(f"`{a.text}`" for a in self.missing)


@dataclass(frozen=True)
class _Coverage:
  missing: Optional[Tuple[Requirement, ...]]
  relies_on_invariant: bool = False

  @property
  def covered(self) -> bool:
    return self.missing is None


def coverage(
  outstanding: RequirementSet,
  guards: RequirementSet,
  contract: RequirementSet,
  invariant: RequirementSet = EMPTY,
) -> _Coverage:
  """
  Checks whether an outstanding obligation holds on every path to its site.

  Args:
      outstanding: The undischarged requirements (DNF).
      guards: Branch conditions enclosing the site (DNF).
      contract: Assumptions the enclosing item may rely on (DNF).
      invariant: Type invariant assumed for the receiver, if any.

  Returns:
      _Coverage: The closest missing atoms of the first uncovered path, and
      whether the invariant was needed to cover some path.
  """
  if outstanding.is_empty:
    return _Coverage(None)

  relies = False
  for guard in guards.conjunctions():
    if not satisfiable(guard):
      continue
    for assumed in contract.conjunctions():
      base = guard + assumed
      if not satisfiable(base):
        continue
      missing = first_uncovered(base, outstanding.disjuncts)
      if missing is None:
        continue
      if not invariant.is_empty:
        alternatives = [base + inv for inv in invariant.conjunctions() if satisfiable(base + inv)]
        if all(first_uncovered(alt, outstanding.disjuncts) is None for alt in alternatives):
          relies = True
          continue
      return _Coverage(tuple(missing), relies)
  return _Coverage(None, relies)


class SoundnessChecker:
  """
  Assigns a terminal state to every entity.

  Attributes:
      model (ItemModel): The finalized model.
      graph (ObligationGraph): Edges and callee-first order.
      resolver (VisibilityResolver): Scope and boundary resolution.
      config (AnalysisConfig): Criterion and reporting options.
      collector (DiagnosticsCollector): Destination for findings.
  """

  def __init__(
    self,
    model: ItemModel,
    graph: ObligationGraph,
    resolver: VisibilityResolver,
    config: Optional[AnalysisConfig] = None,
    collector: Optional[DiagnosticsCollector] = None,
  ):
    self.model = model
    self.graph = graph
    self.resolver = resolver
    self.config = config or AnalysisConfig()
    self.collector = collector if collector is not None else DiagnosticsCollector(model.declaration_order)

  def run(self) -> Dict[str, TerminalState]:
    """
    Classifies every entity.

    Returns:
        Dict[str, TerminalState]: Terminal state per path, in declaration order.
    """
    states: Dict[str, TerminalState] = {}
    for path in self.graph.order:
      states[path] = self.check_item(self.model.items[path])
    for struct in self.model.structs.values():
      states[struct.path] = self.check_struct(struct)
    for trait in self.model.traits.values():
      states[trait.path] = self.check_trait(trait)
    for impl in self.model.impls.values():
      states[impl.path] = self.check_impl(impl)
    for enum in self.model.enums.values():
      states[enum.path] = self._settle(enum.path, TerminalState.SOUND_SAFE)

    order = self.model.declaration_order
    return dict(sorted(states.items(), key=lambda kv: order.get(kv[0], -1)))

  # --- Reporting helpers ---

  def _report(
    self,
    path: str,
    state: TerminalState,
    rule: RuleId,
    explanation: str,
    line: Optional[int] = None,
  ) -> None:
    self.collector.add(path, state, rule, explanation, Severity.VIOLATION, line)

  def _recommend(self, path: str, rule: RuleId, explanation: str, line: Optional[int] = None) -> None:
    if not self.config.report_recommended:
      return
    sound = TerminalState.SOUND_UNSAFE if self._declared_unsafe(path) else TerminalState.SOUND_SAFE
    self.collector.add(path, sound, rule, explanation, Severity.RECOMMENDED, line)

  def _declared_unsafe(self, path: str) -> bool:
    return bool(getattr(self.model.entity(path), "unsafe", False))

  def _settle(self, path: str, sound: TerminalState) -> TerminalState:
    """
    Picks the highest-precedence violation recorded for `path`, or `sound`.
    """
    state = sound
    for finding in self.collector.for_path(path):
      if finding.severity != Severity.VIOLATION:
        continue
      if STATE_PRECEDENCE.index(finding.state) > STATE_PRECEDENCE.index(state):
        state = finding.state
    return state

  def _report_issues(self, path: str) -> None:
    for issue in self.model.issues_for(path):
      self._report(path, TerminalState.MALFORMED_REQUIREMENT, issue.rule, issue.explanation)

  # --- Function-like items ---

  def check_item(self, item: Item) -> TerminalState:
    """
    Classifies a function, method, associated function or trait method.

    Args:
        item: The item.

    Returns:
        TerminalState: Its terminal state.
    """
    self._report_issues(item.path)
    edges = self.graph.edges_from(item.path)
    for edge in edges:
      self._recommendations(item, edge)

    if item.implements:
      return self._check_implementation(item, edges)

    documented = item.requirements.documented()
    contract = documented if item.unsafe else EMPTY
    obligations, relies = self._uncovered(item, edges, contract)

    if relies and not item.requirements.has_marker:
      owner = item.owner
      self._report(
        item.path,
        TerminalState.CLASSIFICATION_VIOLATION,
        RuleId.STRUCT_COMMENT_2,
        f"relies on the type invariant of `{owner}` without documenting `invariant(self)`",
        item.line,
      )

    propagated: List[_Obligation] = []
    for ob in obligations:
      if not ob.propagate:
        self._report(item.path, ob.state, ob.rule, self._explain_escape(ob), ob.edge.line)
        continue
      # Invariants speak in `self` terms, so placement alone decides them.
      hidden = [] if ob.edge.kind.touches_internals else self._invisible(item, ob.missing)
      if hidden:
        self._report(
          item.path,
          TerminalState.CLASSIFICATION_VIOLATION,
          RuleId.FUNCTION_COMMENT_3,
          f"{ob.text} from {ob.edge.describe()} references {', '.join(hidden)}, "
          "which callers cannot name; it must be justified at the site",
          ob.edge.line,
        )
        continue
      propagated.append(ob)

    self._classify(item, documented, propagated)
    sound = TerminalState.SOUND_UNSAFE if item.unsafe else TerminalState.SOUND_SAFE
    return self._settle(item.path, sound)

  def _classify(self, item: Item, documented: RequirementSet, propagated: Sequence[_Obligation]) -> None:
    if not item.unsafe:
      for ob in propagated:
        self._report(
          item.path,
          TerminalState.CLASSIFICATION_VIOLATION,
          ob.rule,
          f"declared safe but {ob.text} from {ob.edge.describe()} is neither justified nor guaranteed",
          ob.edge.line,
        )
      if not documented.is_empty:
        self._report(
          item.path,
          TerminalState.CLASSIFICATION_VIOLATION,
          RuleId.FUNCTION_SAFETY_1,
          f"declared safe but documents safety requirements: {documented}",
          item.line,
        )
      return

    if documented.is_empty and not propagated:
      self._report(
        item.path,
        TerminalState.CLASSIFICATION_VIOLATION,
        RuleId.FUNCTION_SAFETY_2,
        "declared unsafe but has no safety requirement",
        item.line,
      )
    for ob in propagated:
      self._report(
        item.path,
        TerminalState.CLASSIFICATION_VIOLATION,
        RuleId.FUNCTION_COMMENT_1,
        f"{ob.text} from {ob.edge.describe()} is neither justified nor documented",
        ob.edge.line,
      )

  def _invisible(self, item: Item, atoms: Sequence[Requirement]) -> List[str]:
    hidden: List[str] = []
    for atom in atoms:
      for name in invisible_identifiers(atom, item.signature, self.config.ambient_names):
        quoted = f"`{name}`"
        if quoted not in hidden:
          hidden.append(quoted)
    return hidden

  def _invariant_for(self, item: Item) -> RequirementSet:
    struct = self.model.structs.get(item.owner) if item.owner else None
    if struct is None or not item.has_receiver:
      return EMPTY
    return struct.invariant

  def _uncovered(
    self,
    item: Item,
    edges: Sequence[ObligationEdge],
    contract: RequirementSet,
  ) -> Tuple[List[_Obligation], bool]:
    """
    Collects the obligations of `item` not covered by `contract`.

    Returns:
        The uncovered obligations and whether the type invariant was relied on.
    """
    invariant = self._invariant_for(item)
    result: List[_Obligation] = []
    relies = False
    for edge in edges:
      if edge.is_discharged:
        continue
      placement = self._placement(item, edge)
      if placement is None:
        continue
      rule, state, propagate = placement
      cover = coverage(edge.outstanding, edge.guards, contract, invariant)
      relies = relies or cover.relies_on_invariant
      if not cover.covered:
        result.append(_Obligation(edge, cover.missing, rule, state, propagate))
    return result, relies

  def _placement(self, item: Item, edge: ObligationEdge) -> Optional[Tuple[RuleId, TerminalState, bool]]:
    """
    Decides which rule an uncovered edge violates, or None when the edge is
    tolerated (struct internals reached from inside the soundness boundary).
    """
    if not edge.kind.touches_internals:
      return RuleId.FUNCTION_SAFETY_1, TerminalState.CLASSIFICATION_VIOLATION, True

    boundary = self.resolver.boundary(edge.target, self.config.criterion)
    if item.owner == edge.target:
      if item.constructor:
        return RuleId.STRUCT_SAFETY_1, TerminalState.CLASSIFICATION_VIOLATION, True
      if self.resolver.exposed_outside(item, boundary):
        return RuleId.STRUCT_SAFETY_2, TerminalState.CLASSIFICATION_VIOLATION, True
      return None

    if boundary.contains(item) and not self.resolver.exposed_outside(item, boundary):
      return None
    return RuleId.STRUCT_BOUNDARY_1, TerminalState.BOUNDARY_VIOLATION, False

  def _explain_escape(self, ob: _Obligation) -> str:
    boundary = self.resolver.boundary(ob.edge.target, self.config.criterion)
    return f"{ob.edge.describe()} bypasses the invariant of `{ob.edge.target}` ({ob.text}) from outside the {boundary}"

  def _recommendations(self, item: Item, edge: ObligationEdge) -> None:
    justification = edge.justification
    if justification is None:
      if edge.requires_unsafe:
        self._recommend(
          item.path,
          RuleId.RECOMMENDED_SAFETY_COMMENT,
          f"{edge.describe()} has no SAFETY justification",
          edge.line,
        )
      return
    for claim in justification.claims:
      if not claim.reason:
        self._recommend(
          item.path,
          RuleId.RECOMMENDED_JUSTIFICATION_REASON,
          f"claim '{claim.text}' at {edge.describe()} gives no reason",
          edge.line,
        )
    for claim in edge.unmatched_claims:
      self._recommend(
        item.path,
        RuleId.RECOMMENDED_UNMATCHED_CLAIM,
        f"claim '{claim.text}' at {edge.describe()} matches no requirement",
        edge.line,
      )

  # --- Trait implementations ---

  def _check_implementation(self, item: Item, edges: Sequence[ObligationEdge]) -> TerminalState:
    """
    Checks an impl method against the trait method it implements. Only
    strengthening of the trait's contract is a violation.
    """
    declared = self.model.items[item.implements]
    renames = dict(zip(declared.params, item.params))
    trait_contract = declared.requirements.documented().substitute(renames)
    documented = item.requirements.documented()
    strengthening = TerminalState.CONTRACT_STRENGTHENING_VIOLATION

    if item.unsafe and not declared.unsafe:
      self._report(
        item.path,
        strengthening,
        RuleId.TRAIT_CONTRACT_1,
        f"unsafe implementation of safe trait method `{declared.path}`",
        item.line,
      )
    if not documented.entailed_by(trait_contract):
      self._report(
        item.path,
        strengthening,
        RuleId.TRAIT_CONTRACT_1,
        f"requires {documented}, which `{declared.path}` does not guarantee ({trait_contract})",
        item.line,
      )

    assumed = trait_contract if declared.unsafe else EMPTY
    obligations, _ = self._uncovered(item, edges, assumed)
    for ob in obligations:
      if not ob.propagate:
        self._report(item.path, ob.state, ob.rule, self._explain_escape(ob), ob.edge.line)
        continue
      self._report(
        item.path,
        strengthening,
        RuleId.TRAIT_CONTRACT_1,
        f"{ob.text} from {ob.edge.describe()} is not covered by the contract of `{declared.path}`",
        ob.edge.line,
      )

    sound = TerminalState.SOUND_UNSAFE if item.unsafe else TerminalState.SOUND_SAFE
    return self._settle(item.path, sound)

  # --- Structs, traits, impls ---

  def check_struct(self, struct: Struct) -> TerminalState:
    """
    Reports malformed invariants and invariant fields nameable outside the
    soundness boundary.
    """
    self._report_issues(struct.path)
    if not struct.invariant.is_empty:
      boundary = self.resolver.boundary(struct.path, self.config.criterion)
      for name in struct.invariant_fields:
        if self.resolver.field_exposed(struct, name, boundary):
          self._report(
            struct.path,
            TerminalState.BOUNDARY_VIOLATION,
            RuleId.STRUCT_BOUNDARY_2,
            f"field `{name}` is constrained by the type invariant but nameable outside the {boundary}",
            struct.line,
          )
    return self._settle(struct.path, TerminalState.SOUND_SAFE)

  def check_trait(self, trait: Trait) -> TerminalState:
    self._report_issues(trait.path)
    if trait.unsafe and trait.invariant.is_empty:
      self._report(
        trait.path,
        TerminalState.CLASSIFICATION_VIOLATION,
        RuleId.TRAIT_SAFETY_1,
        "unsafe trait documents no invariant for implementors to uphold",
        trait.line,
      )
    elif not trait.unsafe and not trait.invariant.is_empty:
      self._report(
        trait.path,
        TerminalState.CLASSIFICATION_VIOLATION,
        RuleId.TRAIT_SAFETY_2,
        f"safe trait documents an invariant ({trait.invariant}); it must be declared unsafe",
        trait.line,
      )
    sound = TerminalState.SOUND_UNSAFE if trait.unsafe else TerminalState.SOUND_SAFE
    return self._settle(trait.path, sound)

  def _trait_is_unsafe(self, impl: TraitImpl) -> Tuple[bool, bool]:
    """
    Returns ``(known, unsafe)`` for the implemented trait.
    """
    for candidate in (impl.trait, f"{impl.module}::{impl.trait}"):
      trait = self.model.traits.get(candidate)
      if trait is not None:
        return True, trait.unsafe
    name = impl.trait.rsplit("::", 1)[-1]
    return False, name in self.config.unsafe_external_traits

  def check_impl(self, impl: TraitImpl) -> TerminalState:
    """
    Checks that an impl block's unsafety matches its trait.
    """
    known, trait_unsafe = self._trait_is_unsafe(impl)
    if impl.unsafe != trait_unsafe:
      where = "" if known else " (external trait)"
      expected = "unsafe" if trait_unsafe else "safe"
      self._report(
        impl.path,
        TerminalState.CLASSIFICATION_VIOLATION,
        RuleId.TRAIT_IMPL_1,
        f"implementation of `{impl.trait}`{where} must be {expected}",
        impl.line,
      )
    if impl.unsafe and impl.justification is None:
      self._recommend(
        impl.path,
        RuleId.RECOMMENDED_IMPL_JUSTIFICATION,
        f"unsafe implementation of `{impl.trait}` for `{impl.target}` has no SAFETY justification",
        impl.line,
      )
    sound = TerminalState.SOUND_UNSAFE if impl.unsafe else TerminalState.SOUND_SAFE
    return self._settle(impl.path, sound)
