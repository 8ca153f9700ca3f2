"""
Visibility Resolver.

Computes, for every entity of the Item Model, the module subtree from which it
can be named (its *scope root*), and resolves the soundness boundary of a
struct under a `SoundnessCriterion`.

Scope roots are module paths; ``None`` stands for the universe (reachable
from outside the crate). Because every declared scope is an ancestor of the
declaring module, the effective scope along a chain of enclosing modules is
simply the deepest root.
"""

from dataclasses import dataclass
from typing import Dict, Optional

from unsafe_ledger.enums import ItemKind, SoundnessCriterion, VisibilityKind
from unsafe_ledger.model.items import (
  CRATE_ROOT,
  Item,
  ItemModel,
  Struct,
  Visibility,
  is_within,
  parent_path,
)

# Observer standing for code outside the crate.
EXTERNAL = "<external>"

_UNSET = object()


def narrowest(a: Optional[str], b: Optional[str]) -> Optional[str]:
  """
  Returns the narrower of two scope roots on the same ancestor chain.
  """
  if a is None:
    return b
  if b is None:
    return a
  return a if is_within(a, b) else b


@dataclass(frozen=True)
class SoundnessBoundary:
  """
  The region inside which unconstrained access to a struct's internals is
  tolerated.

  Attributes:
      struct: Path of the struct.
      module: Module defining the struct.
      criterion: The criterion the boundary was resolved under.
  """

  struct: str
  module: str
  criterion: SoundnessCriterion

  def contains(self, item: Item) -> bool:
    """
    Checks whether `item` lies inside the boundary.

    Args:
        item: A function-like item.

    Returns:
        bool: True for the struct's own impl items (struct level), items of
        the defining module subtree (module level) or any crate item
        (crate level).
    """
    if self.criterion == SoundnessCriterion.STRUCT:
      return item.owner == self.struct
    if self.criterion == SoundnessCriterion.MODULE:
      return is_within(item.module, self.module)
    return True

  def escapes(self, scope_root: Optional[str]) -> bool:
    """
    True if something with the given scope root is nameable outside the boundary.
    """
    if self.criterion == SoundnessCriterion.STRUCT:
      # Sibling code in the module is already outside the impl blocks.
      return True
    if self.criterion == SoundnessCriterion.MODULE:
      return scope_root is None or not is_within(scope_root, self.module)
    return scope_root is None

  def __str__(self) -> str:
    return f"{self.criterion.value}-level boundary of {self.struct}"


class VisibilityResolver:
  """
  Resolves scopes over an `ItemModel`. Results are memoized per path.
  """

  def __init__(self, model: ItemModel):
    self.model = model
    self._module_cache: Dict[str, Optional[str]] = {}
    self._scope_cache: Dict[str, Optional[str]] = {}

  # --- Scope roots ---

  @staticmethod
  def scope_root(visibility: Visibility, module: str) -> Optional[str]:
    """
    Translates a declared visibility into a scope root.

    Args:
        visibility: The declared marker.
        module: The module the marker is declared in.

    Returns:
        Optional[str]: The module subtree allowed to name the entity,
        or None for ``pub``.
    """
    kind = visibility.kind
    if kind == VisibilityKind.PUB:
      return None
    if kind == VisibilityKind.PUB_CRATE:
      return CRATE_ROOT
    if kind == VisibilityKind.PUB_IN_PATH:
      return visibility.path
    if kind == VisibilityKind.PUB_SUPER:
      return parent_path(module) or CRATE_ROOT
    return module

  def module_scope(self, module: str) -> Optional[str]:
    """
    Effective scope of a module: narrowest along its ancestor chain.
    """
    if module in self._module_cache:
      return self._module_cache[module]
    if module == CRATE_ROOT:
      root = None
    else:
      parent = parent_path(module) or CRATE_ROOT
      declared = self.model.modules[module].visibility
      root = narrowest(self.scope_root(declared, parent), self.module_scope(parent))
    self._module_cache[module] = root
    return root

  def scope_of(self, path: str) -> Optional[str]:
    """
    Effective scope root of an entity, module or enum variant.

    Trait methods (and impl methods implementing a trait) inherit the trait's
    scope regardless of their own marker; enum variants inherit the enum's.

    Args:
        path: The entity path.

    Returns:
        Optional[str]: Scope root, None for the universe.

    Raises:
        KeyError: If the path names nothing in the model.
    """
    cached = self._scope_cache.get(path, _UNSET)
    if cached is not _UNSET:
      return cached
    root = self._resolve(path)
    self._scope_cache[path] = root
    return root

  def _resolve(self, path: str) -> Optional[str]:
    model = self.model
    if path in model.modules:
      return self.module_scope(path)

    item = model.items.get(path)
    if item is not None:
      if item.kind == ItemKind.TRAIT_METHOD:
        return self.scope_of(item.owner)
      if item.implements:
        return self.scope_of(item.implements)
      own = narrowest(self.scope_root(item.visibility, item.module), self.module_scope(item.module))
      if item.owner:
        own = narrowest(own, self.scope_of(item.owner))
      return own

    entity = model.entity(path)
    if entity is not None:
      if entity.kind == ItemKind.TRAIT_IMPL:
        return self.scope_of(entity.target) if model.entity(entity.target) else self.module_scope(entity.module)
      return narrowest(self.scope_root(entity.visibility, entity.module), self.module_scope(entity.module))

    parent = parent_path(path)
    if parent in model.enums and path.rsplit("::", 1)[-1] in model.enums[parent].variants:
      return self.scope_of(parent)
    raise KeyError(path)

  def field_scope(self, struct: Struct, name: str) -> Optional[str]:
    """
    Effective scope of a struct field: its own marker, bounded by the struct's scope.
    """
    field = struct.get_field(name)
    if field is None:
      raise KeyError(f"{struct.path}::{name}")
    return narrowest(self.scope_root(field.visibility, struct.module), self.scope_of(struct.path))

  def can_see(self, path: str, observer: str) -> bool:
    """
    Checks whether code at `observer` can name `path`.

    Args:
        path: The entity (or enum variant) being named.
        observer: A module path, or `EXTERNAL`.

    Returns:
        bool: True if nameable.
    """
    root = self.scope_of(path)
    if root is None:
      return True
    if observer == EXTERNAL:
      return False
    return is_within(observer, root)

  # --- Soundness boundary ---

  def boundary(self, struct: str, criterion: SoundnessCriterion) -> SoundnessBoundary:
    """
    Resolves the soundness boundary of `struct`.

    Args:
        struct: Path of the struct.
        criterion: The run's soundness criterion.

    Returns:
        SoundnessBoundary: The boundary.
    """
    entity = self.model.structs[struct]
    return SoundnessBoundary(struct=struct, module=entity.module, criterion=criterion)

  def exposed_outside(self, item: Item, boundary: SoundnessBoundary) -> bool:
    """
    Whether `item` can be named from some location outside `boundary`.
    """
    return boundary.escapes(self.scope_of(item.path))

  def field_exposed(self, struct: Struct, name: str, boundary: SoundnessBoundary) -> bool:
    """
    Whether a field is nameable outside the wider of the boundary and the
    defining module. Struct-level boundaries widen to the module since field
    privacy cannot be narrower than a module.
    """
    effective = boundary
    if boundary.criterion == SoundnessCriterion.STRUCT:
      effective = SoundnessBoundary(boundary.struct, boundary.module, SoundnessCriterion.MODULE)
    return effective.escapes(self.field_scope(struct, name))
