"""
Entailment and satisfiability over conjunctions of requirement atoms.

The reasoning is deliberately shallow:

1.  **Syntactic**: atoms compare by canonical key; an atom and its negation
    cannot both hold.
2.  **Numeric**: comparisons of one expression against a numeric literal
    (``x > 0``, ``n % 2 == 0``) are folded into an interval per left-hand
    expression, which decides containment and emptiness.

Anything else is treated as opaque. No attempt is made to prove predicates
true; only whether one declared statement structurally covers another.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, TYPE_CHECKING

if TYPE_CHECKING:
  from unsafe_ledger.model.predicates import Requirement


@dataclass
class Interval:
  """
  A (possibly punctured) interval of the real line.
  """

  lo: float = -math.inf
  lo_closed: bool = False
  hi: float = math.inf
  hi_closed: bool = False
  excluded: Set[float] = field(default_factory=set)

  def constrain(self, op: str, value: float) -> None:
    """
    Intersects the interval with the half-space ``x <op> value``.

    Args:
        op: One of ``<``, ``<=``, ``>``, ``>=``, ``==``, ``!=``.
        value: The numeric bound.
    """
    if op == "<":
      if value < self.hi or (value == self.hi and self.hi_closed):
        self.hi, self.hi_closed = value, False
    elif op == "<=":
      if value < self.hi:
        self.hi, self.hi_closed = value, True
    elif op == ">":
      if value > self.lo or (value == self.lo and self.lo_closed):
        self.lo, self.lo_closed = value, False
    elif op == ">=":
      if value > self.lo:
        self.lo, self.lo_closed = value, True
    elif op == "==":
      self.constrain(">=", value)
      self.constrain("<=", value)
    elif op == "!=":
      self.excluded.add(value)

  @property
  def is_empty(self) -> bool:
    if self.lo > self.hi:
      return True
    if self.lo == self.hi:
      if not (self.lo_closed and self.hi_closed):
        return True
      return self.lo in self.excluded
    return False

  def satisfies(self, op: str, value: float) -> bool:
    """
    Checks that every point of the interval satisfies ``x <op> value``.
    """
    if self.is_empty:
      return True
    if op == "<":
      return self.hi < value or (self.hi == value and not self.hi_closed)
    if op == "<=":
      return self.hi <= value
    if op == ">":
      return self.lo > value or (self.lo == value and not self.lo_closed)
    if op == ">=":
      return self.lo >= value
    if op == "==":
      return self.lo == self.hi == value
    if op == "!=":
      if value in self.excluded:
        return True
      if value < self.lo or value > self.hi:
        return True
      if value == self.hi and not self.hi_closed:
        return True
      return value == self.lo and not self.lo_closed
    return False


def _intervals(atoms: Iterable["Requirement"]) -> Dict[str, Interval]:
  ranges: Dict[str, Interval] = {}
  for atom in atoms:
    if atom.bound is None:
      continue
    lhs, op, value = atom.bound
    ranges.setdefault(lhs, Interval()).constrain(op, value)
  return ranges


def satisfiable(atoms: Iterable["Requirement"]) -> bool:
  """
  Returns False when the conjunction of `atoms` is recognizably contradictory.

  Args:
      atoms: The conjunction to inspect.

  Returns:
      bool: False if a contradiction was found, True otherwise.
  """
  atoms = list(atoms)
  keys = {a.key for a in atoms}
  if "False" in keys:
    return False
  for atom in atoms:
    if atom.negates is not None and atom.negates in keys:
      return False
  return not any(r.is_empty for r in _intervals(atoms).values())


def entails(assumptions: Iterable["Requirement"], target: "Requirement") -> bool:
  """
  Decides whether a conjunction of assumptions structurally implies `target`.

  Args:
      assumptions: Atoms known to hold.
      target: Atom to establish.

  Returns:
      bool: True if `target` is covered.
  """
  assumptions = list(assumptions)
  if target.key == "True":
    return True
  if any(a.key == target.key for a in assumptions):
    return True
  if not satisfiable(assumptions):
    return True
  if target.bound is not None:
    lhs, op, value = target.bound
    ranges = _intervals(assumptions)
    if lhs in ranges:
      return ranges[lhs].satisfies(op, value)
  return False


def missing_atoms(assumptions: Iterable["Requirement"], conjunction: Iterable["Requirement"]) -> List["Requirement"]:
  """
  Lists the atoms of `conjunction` that `assumptions` do not entail.
  """
  assumptions = list(assumptions)
  return [atom for atom in conjunction if not entails(assumptions, atom)]


def first_uncovered(
  assumptions: Iterable["Requirement"],
  disjuncts: Iterable[Iterable["Requirement"]],
) -> Optional[List["Requirement"]]:
  """
  Checks whether `assumptions` entail at least one of `disjuncts`.

  Args:
      assumptions: Atoms known to hold.
      disjuncts: Alternatives, each a conjunction of atoms.

  Returns:
      None if some disjunct is fully entailed (or there are no disjuncts),
      otherwise the missing atoms of the alternative that came closest.
  """
  assumptions = list(assumptions)
  best: Optional[List["Requirement"]] = None
  for conjunction in disjuncts:
    missing = missing_atoms(assumptions, conjunction)
    if not missing:
      return None
    if best is None or len(missing) < len(best):
      best = missing
  return best
