"""
Item Model.

Frozen, finalized representation of a crate's safety-relevant entities,
produced by `ItemModelBuilder` from a `CrateSnapshot`. Requirement text has
been parsed into `RequirementSet` values and justifications into
`Justification` values; nothing here is mutated after construction.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple, Union

from unsafe_ledger.enums import ItemKind, RuleId, UnsafeOpKind, VisibilityKind
from unsafe_ledger.model.predicates import EMPTY, Justification, RequirementSet

CRATE_ROOT = "crate"


def parent_path(path: str) -> Optional[str]:
  """
  Returns the enclosing path of a ``::``-separated path, or None at the root.
  """
  if "::" not in path:
    return None
  return path.rsplit("::", 1)[0]


def is_within(path: str, ancestor: str) -> bool:
  """
  True if `path` equals `ancestor` or lies beneath it.
  """
  return path == ancestor or path.startswith(ancestor + "::")


@dataclass(frozen=True)
class Visibility:
  kind: VisibilityKind = VisibilityKind.PRIVATE
  path: Optional[str] = None


@dataclass(frozen=True)
class Module:
  path: str
  visibility: Visibility = Visibility()

  @property
  def parent(self) -> Optional[str]:
    return parent_path(self.path)


@dataclass(frozen=True)
class Field:
  name: str
  visibility: Visibility = Visibility()


@dataclass(frozen=True)
class Operation:
  """
  A safety-relevant site inside an item body.
  """

  op: UnsafeOpKind
  target: str
  args: Tuple[str, ...] = ()
  receiver: Optional[str] = None
  fields: Tuple[Tuple[str, str], ...] = ()
  field: Optional[str] = None
  value: Optional[str] = None
  access: str = "read"
  guards: RequirementSet = EMPTY
  justification: Optional[Justification] = None
  line: Optional[int] = None

  @property
  def field_map(self) -> Dict[str, str]:
    return dict(self.fields)


@dataclass(frozen=True)
class Item:
  """
  A function, method, associated function or trait method.
  """

  path: str
  kind: ItemKind
  module: str
  visibility: Visibility
  unsafe: bool
  params: Tuple[str, ...] = ()
  requirements: RequirementSet = EMPTY
  owner: Optional[str] = None
  body: Tuple[Operation, ...] = ()
  constructor: bool = False
  implements: Optional[str] = None
  has_receiver: bool = False
  order: int = 0
  line: Optional[int] = None

  @property
  def signature(self) -> Tuple[str, ...]:
    """Identifiers visible to this item's requirements."""
    if self.has_receiver:
      return ("self",) + self.params
    return self.params


@dataclass(frozen=True)
class Struct:
  path: str
  module: str
  visibility: Visibility
  fields: Tuple[Field, ...] = ()
  invariant: RequirementSet = EMPTY
  order: int = 0
  line: Optional[int] = None
  kind: ItemKind = ItemKind.STRUCT

  @property
  def field_names(self) -> Tuple[str, ...]:
    return tuple(f.name for f in self.fields)

  def get_field(self, name: str) -> Optional[Field]:
    for f in self.fields:
      if f.name == name:
        return f
    return None

  @property
  def invariant_fields(self) -> Tuple[str, ...]:
    """Fields the type invariant constrains."""
    touched = set()
    for atom in self.invariant.atoms():
      touched |= atom.self_members
    return tuple(name for name in self.field_names if name in touched)


@dataclass(frozen=True)
class Trait:
  path: str
  module: str
  visibility: Visibility
  unsafe: bool = False
  invariant: RequirementSet = EMPTY
  methods: Tuple[str, ...] = ()
  order: int = 0
  line: Optional[int] = None
  kind: ItemKind = ItemKind.TRAIT


@dataclass(frozen=True)
class Enum:
  path: str
  module: str
  visibility: Visibility
  variants: Tuple[str, ...] = ()
  order: int = 0
  line: Optional[int] = None
  kind: ItemKind = ItemKind.ENUM


@dataclass(frozen=True)
class TraitImpl:
  path: str
  module: str
  trait: str
  target: str
  unsafe: bool = False
  justification: Optional[Justification] = None
  order: int = 0
  line: Optional[int] = None
  kind: ItemKind = ItemKind.TRAIT_IMPL


Entity = Union[Item, Struct, Trait, Enum, TraitImpl]


@dataclass(frozen=True)
class ModelIssue:
  """
  A requirement that references identifiers not visible where it is declared.
  """

  path: str
  rule: RuleId
  requirement: str
  identifiers: Tuple[str, ...]

  @property
  def explanation(self) -> str:
    names = ", ".join(f"`{n}`" for n in self.identifiers)
    return f"requirement '{self.requirement}' references {names}, which is not visible at its declaration site"


@dataclass
class ItemModel:
  """
  The finalized Item Model of one crate.
  """

  crate: str
  modules: Dict[str, Module] = field(default_factory=dict)
  items: Dict[str, Item] = field(default_factory=dict)
  structs: Dict[str, Struct] = field(default_factory=dict)
  traits: Dict[str, Trait] = field(default_factory=dict)
  enums: Dict[str, Enum] = field(default_factory=dict)
  impls: Dict[str, TraitImpl] = field(default_factory=dict)
  issues: List[ModelIssue] = field(default_factory=list)

  def entity(self, path: str) -> Optional[Entity]:
    for table in (self.items, self.structs, self.traits, self.enums, self.impls):
      if path in table:
        return table[path]
    return None

  def entities(self) -> Iterator[Entity]:
    """Yields every entity in declaration order."""
    merged: List[Entity] = [
      *self.items.values(),
      *self.structs.values(),
      *self.traits.values(),
      *self.enums.values(),
      *self.impls.values(),
    ]
    return iter(sorted(merged, key=lambda e: e.order))

  @property
  def declaration_order(self) -> Dict[str, int]:
    return {e.path: e.order for e in self.entities()}

  def issues_for(self, path: str) -> List[ModelIssue]:
    return [issue for issue in self.issues if issue.path == path]
