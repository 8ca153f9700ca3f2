"""
Obligation Graph Builder.

Builds one `ObligationEdge` per safety-relevant operation of every item body:

*   **call**: the callee's documented contract, parameters renamed to the
    call-site arguments (receivers map ``self``).
*   **primitive** (raw dereference, ``static mut`` access, union field read):
    the configured requirement templates for the operand.
*   **struct_literal** / **field_write**: the struct's type invariant, fields
    renamed to their initializers (or the written value).

A justification annotation at the site discharges the atoms its claims name,
either in caller terms (``aligned(buf)``) or in callee terms (``aligned(p)``).
Matching is structural; no claim is ever checked for truth.

Items are ordered callee-first. Cycles among items (self-calls included)
abort the build with `CyclicObligationError`.
"""

import heapq
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Set, Tuple

from rich.markup import escape

from unsafe_ledger.config import AnalysisConfig
from unsafe_ledger.enums import UnsafeOpKind
from unsafe_ledger.errors import CyclicObligationError
from unsafe_ledger.model.items import Item, ItemModel, Operation, Struct
from unsafe_ledger.model.logic import entails, satisfiable
from unsafe_ledger.model.predicates import (
  EMPTY,
  Claim,
  Justification,
  RequirementSet,
)
from unsafe_ledger.utils.console import log_warning

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ObligationEdge:
  """
  A caller's dependency on a callee item, a primitive operation or a
  struct's internals.
  """

  caller: str
  """Path of the item whose body contains the operation."""

  op: Operation
  """The originating operation."""

  target: str
  """Callee item path, struct path, or the primitive operand."""

  required: RequirementSet = EMPTY
  """The callee's requirements translated into caller terms."""

  callee_terms: RequirementSet = EMPTY
  """The same requirements as declared by the callee."""

  discharged: FrozenSet[str] = frozenset()
  """Keys (caller terms) of atoms claimed by the justification."""

  outstanding: RequirementSet = EMPTY
  """Requirements left after removing discharged atoms."""

  unmatched_claims: Tuple[Claim, ...] = ()
  """Claims that name none of the requirements."""

  requires_unsafe: bool = False
  """True when the operation is only legal inside an unsafe context."""

  @property
  def kind(self) -> UnsafeOpKind:
    return self.op.op

  @property
  def guards(self) -> RequirementSet:
    return self.op.guards

  @property
  def justification(self) -> Optional[Justification]:
    return self.op.justification

  @property
  def is_discharged(self) -> bool:
    return self.outstanding.is_empty

  @property
  def line(self) -> Optional[int]:
    return self.op.line

  def describe(self) -> str:
    """Short human description of the edge target."""
    if self.kind == UnsafeOpKind.CALL:
      return f"call to `{self.target}`"
    if self.kind == UnsafeOpKind.STRUCT_LITERAL:
      return f"`{self.target}` literal"
    if self.kind == UnsafeOpKind.FIELD_WRITE:
      return f"write to `{self.op.receiver or 'self'}.{self.op.field}`"
    return f"{self.kind.value.replace('_', ' ')} of `{self.target}`"


@dataclass
class ObligationGraph:
  """
  All obligation edges of a crate, grouped by caller, plus the callee-first
  processing order of items.
  """

  edges: Dict[str, List[ObligationEdge]] = field(default_factory=dict)
  order: List[str] = field(default_factory=list)

  def edges_from(self, caller: str) -> List[ObligationEdge]:
    return self.edges.get(caller, [])

  def callees_of(self, caller: str) -> List[str]:
    """Distinct item callees, in body order."""
    seen: List[str] = []
    for edge in self.edges_from(caller):
      if edge.kind == UnsafeOpKind.CALL and edge.target not in seen:
        seen.append(edge.target)
    return seen

  def all_edges(self) -> List[ObligationEdge]:
    return [edge for path in self.order for edge in self.edges_from(path)]


def _translate(
  requirements: RequirementSet,
  names: Optional[Dict[str, str]] = None,
  self_fields: Optional[Dict[str, str]] = None,
) -> Tuple[RequirementSet, Dict[str, str]]:
  """
  Renames a requirement set and records the callee-term key of every
  translated atom.
  """
  origin: Dict[str, str] = {}
  disjuncts = []
  for conj in requirements.disjuncts:
    translated = []
    for atom in conj:
      renamed = atom.substitute(names, self_fields)
      origin.setdefault(renamed.key, atom.key)
      translated.append(renamed)
    disjuncts.append(translated)
  return RequirementSet.build(disjuncts), origin


def _discharge(
  required: RequirementSet,
  origin: Dict[str, str],
  justification: Optional[Justification],
) -> Tuple[FrozenSet[str], Tuple[Claim, ...]]:
  """
  Matches justification claims against required atoms.

  Returns:
      The discharged atom keys and the claims that matched nothing.
  """
  if justification is None:
    return frozenset(), ()

  atoms = required.atoms()
  discharged: Set[str] = set()
  unmatched: List[Claim] = []
  for claim in justification.claims:
    claim_keys = {a.key for a in claim.atoms}
    usable = satisfiable(claim.atoms)
    matched = False
    for atom in atoms:
      by_key = atom.key in claim_keys or origin.get(atom.key) in claim_keys
      if by_key or (usable and entails(claim.atoms, atom)):
        discharged.add(atom.key)
        matched = True
    if not matched:
      unmatched.append(claim)
  return frozenset(discharged), tuple(unmatched)


class ObligationGraphBuilder:
  """
  Derives the `ObligationGraph` from an `ItemModel`.

  Attributes:
      model (ItemModel): The finalized model.
      config (AnalysisConfig): Supplies primitive requirement templates.
      unresolved (List[Tuple[str, str]]): (caller, target) pairs that named nothing.
  """

  def __init__(self, model: ItemModel, config: Optional[AnalysisConfig] = None):
    self.model = model
    self.config = config or AnalysisConfig()
    self.unresolved: List[Tuple[str, str]] = []

  def build(self) -> ObligationGraph:
    """
    Builds every edge and the callee-first item order.

    Returns:
        ObligationGraph: The graph.

    Raises:
        CyclicObligationError: If items call each other in a cycle.
    """
    self.unresolved = []
    graph = ObligationGraph()
    for item in sorted(self.model.items.values(), key=lambda i: i.order):
      graph.edges[item.path] = [e for e in (self._edge(item, op) for op in item.body) if e is not None]
    graph.order = self._callee_first(graph)
    logger.debug("Built %d obligation edges over %d items", len(graph.all_edges()), len(graph.order))
    return graph

  # --- Resolution ---

  def resolve_item(self, caller: Item, target: str) -> Optional[Item]:
    """
    Resolves a call target relative to the caller.

    Tries the path as written, ``Self::`` against the caller's owner, then
    the caller's owner and module as prefixes.
    """
    items = self.model.items
    candidates = [target]
    if target.startswith("Self::") and caller.owner:
      candidates.append(caller.owner + target[len("Self") :])
    if caller.owner:
      candidates.append(f"{caller.owner}::{target}")
    candidates.append(f"{caller.module}::{target}")
    for candidate in candidates:
      if candidate in items:
        return items[candidate]
    return None

  def resolve_struct(self, caller: Item, target: str) -> Optional[Struct]:
    structs = self.model.structs
    if target in ("Self", "") and caller.owner in structs:
      return structs[caller.owner]
    for candidate in (target, f"{caller.module}::{target}"):
      if candidate in structs:
        return structs[candidate]
    return None

  # --- Edges ---

  def _edge(self, caller: Item, op: Operation) -> Optional[ObligationEdge]:
    if op.op == UnsafeOpKind.CALL:
      return self._call_edge(caller, op)
    if op.op.is_primitive:
      return self._primitive_edge(caller, op)
    return self._internals_edge(caller, op)

  def _finish(
    self,
    caller: Item,
    op: Operation,
    target: str,
    callee_terms: RequirementSet,
    required: RequirementSet,
    origin: Dict[str, str],
    requires_unsafe: bool,
  ) -> ObligationEdge:
    discharged, unmatched = _discharge(required, origin, op.justification)
    return ObligationEdge(
      caller=caller.path,
      op=op,
      target=target,
      required=required,
      callee_terms=callee_terms,
      discharged=discharged,
      outstanding=required.without(discharged),
      unmatched_claims=unmatched,
      requires_unsafe=requires_unsafe,
    )

  def _call_edge(self, caller: Item, op: Operation) -> Optional[ObligationEdge]:
    callee = self.resolve_item(caller, op.target)
    if callee is None:
      self.unresolved.append((caller.path, op.target))
      log_warning(f"[path]{escape(caller.path)}[/path]: unresolved callee `{escape(op.target)}`, no obligation recorded")
      return None

    contract = callee.requirements.documented() if callee.unsafe else EMPTY
    names = dict(zip(callee.params, op.args))
    if callee.has_receiver and op.receiver:
      names["self"] = op.receiver
    required, origin = _translate(contract, names)
    return self._finish(caller, op, callee.path, contract, required, origin, callee.unsafe)

  def _primitive_edge(self, caller: Item, op: Operation) -> ObligationEdge:
    templates = self.config.templates_for(op.op, op.access)
    required = RequirementSet.from_lines(t.format(target=op.target) for t in templates)
    origin = {a.key: a.key for a in required.atoms()}
    return self._finish(caller, op, op.target, required, required, origin, True)

  def _internals_edge(self, caller: Item, op: Operation) -> Optional[ObligationEdge]:
    struct = self.resolve_struct(caller, op.target)
    if struct is None:
      self.unresolved.append((caller.path, op.target))
      log_warning(f"[path]{escape(caller.path)}[/path]: unknown struct `{escape(op.target)}`, no obligation recorded")
      return None

    if op.op == UnsafeOpKind.STRUCT_LITERAL:
      invariant = struct.invariant
      required, origin = _translate(invariant, self_fields=op.field_map)
    else:
      invariant = struct.invariant.restricted_to_members([op.field] if op.field else [])
      receiver = op.receiver or "self"
      names = {"self": receiver} if receiver != "self" else None
      self_fields = {op.field: op.value} if op.field and op.value else None
      required, origin = _translate(invariant, names, self_fields)
    return self._finish(caller, op, struct.path, invariant, required, origin, False)

  # --- Ordering ---

  def _callee_first(self, graph: ObligationGraph) -> List[str]:
    """
    Orders items so every callee precedes its callers (Kahn's algorithm).

    Ties are broken by declaration order so the result is deterministic.
    """
    order_of = {path: item.order for path, item in self.model.items.items()}
    callers: Dict[str, List[str]] = defaultdict(list)
    pending: Dict[str, int] = {}

    for path in graph.edges:
      callees = graph.callees_of(path)
      pending[path] = len(callees)
      for callee in callees:
        callers[callee].append(path)

    ready = [(order_of[p], p) for p, n in pending.items() if n == 0]
    heapq.heapify(ready)
    ordered: List[str] = []

    while ready:
      _, path = heapq.heappop(ready)
      ordered.append(path)
      for caller in callers[path]:
        pending[caller] -= 1
        if pending[caller] == 0:
          heapq.heappush(ready, (order_of[caller], caller))

    if len(ordered) < len(pending):
      done = set(ordered)
      remaining = {p for p in pending if p not in done}
      raise CyclicObligationError(self._find_cycle(graph, remaining, order_of))
    return ordered

  @staticmethod
  def _find_cycle(graph: ObligationGraph, remaining: Set[str], order_of: Dict[str, int]) -> List[str]:
    # Every remaining node still has a remaining callee, so walking always closes a loop.
    current = min(remaining, key=lambda p: order_of[p])
    trail: List[str] = []
    while current not in trail:
      trail.append(current)
      current = next(c for c in graph.callees_of(current) if c in remaining)
    return trail[trail.index(current) :] + [current]
