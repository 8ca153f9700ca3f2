"""
Item Model Builder.

Turns a front-end `CrateSnapshot` into a frozen `ItemModel`:

1.  **Modules**: registers the module tree (the root ``crate`` is implicit) and
    checks that every ``pub(in path)`` target, on any declaration or field,
    is an ancestor of the declaring module.
2.  **Items**: parses documented requirements, operation guards and
    justification annotations; expands trait methods into `TraitMethod`
    items at ``<trait>::<name>``.
3.  **Visibility of requirements**: every requirement may reference only the
    identifiers visible where it is declared (parameters, ``self`` and its
    members on methods, own fields in type invariants). Violations are
    recorded as `ModelIssue` entries, or raised in strict mode.

Structural faults in the snapshot (duplicate paths, unknown modules or owners)
raise `ModelError`.
"""

import logging
from typing import Dict, Iterable, List, Optional, Set, Tuple, Union

from unsafe_ledger.config import AnalysisConfig
from unsafe_ledger.enums import ItemKind, RuleId, UnsafeOpKind, VisibilityKind
from unsafe_ledger.errors import MalformedRequirementError, ModelError
from unsafe_ledger.model.items import (
  CRATE_ROOT,
  Enum,
  Field,
  Item,
  ItemModel,
  ModelIssue,
  Module,
  Operation,
  Struct,
  Trait,
  TraitImpl,
  Visibility,
  is_within,
  parent_path,
)
from unsafe_ledger.model.predicates import Requirement, RequirementSet, parse_justification
from unsafe_ledger.model.schema import (
  CrateSnapshot,
  EnumDecl,
  FunctionDecl,
  OperationDecl,
  StructDecl,
  TraitDecl,
  TraitImplDecl,
  VisibilityDecl,
)

logger = logging.getLogger(__name__)


def invisible_identifiers(
  requirement: Requirement,
  visible: Iterable[str],
  ambient: Iterable[str],
  self_members: Optional[Iterable[str]] = None,
) -> List[str]:
  """
  Lists the identifiers of `requirement` that are not visible.

  Uppercase-initial names (types, constants) and ambient names are always
  visible. When `self_members` is given, members accessed on ``self`` must be
  among them.

  Args:
      requirement: The atom to inspect.
      visible: Identifiers in scope (parameters, ``self``).
      ambient: Configured always-visible names.
      self_members: Allowed members of ``self``, or None to skip the check.

  Returns:
      List[str]: Offending identifiers, sorted.
  """
  visible = set(visible) | set(ambient)
  bad = {n for n in requirement.identifiers if n not in visible and not n[:1].isupper()}
  if self_members is not None and "self" in requirement.identifiers and "self" in visible:
    allowed = set(self_members)
    bad |= {f"self.{m}" for m in requirement.self_members if m not in allowed}
  return sorted(bad)


def _visibility(decl: VisibilityDecl) -> Visibility:
  return Visibility(kind=decl.kind, path=decl.path)


class ItemModelBuilder:
  """
  Builds an `ItemModel` from a `CrateSnapshot`.

  Attributes:
      config (AnalysisConfig): Supplies ambient names and strictness.
      issues (List[ModelIssue]): Requirement-visibility issues found so far.
  """

  def __init__(self, config: Optional[AnalysisConfig] = None):
    self.config = config or AnalysisConfig()
    self.issues: List[ModelIssue] = []
    self._order = 0

  def build(self, snapshot: Union[CrateSnapshot, dict]) -> ItemModel:
    """
    Produces the finalized Item Model.

    Args:
        snapshot: The crate snapshot (or a mapping validated into one).

    Returns:
        ItemModel: The model, with any malformed requirements recorded in `issues`.

    Raises:
        ModelError: If the snapshot is structurally inconsistent.
        MalformedRequirementError: In strict mode, on the first malformed requirement.
    """
    if not isinstance(snapshot, CrateSnapshot):
      snapshot = CrateSnapshot.model_validate(snapshot)

    self.issues = []
    self._order = 0
    model = ItemModel(crate=snapshot.name)
    self._register_modules(snapshot, model)

    decls = list(snapshot.items)
    self._check_unique_paths(decls)

    # Owners are collected up front so methods may be declared before their struct.
    struct_decls = {d.path: d for d in decls if isinstance(d, StructDecl)}
    enum_paths = {d.path for d in decls if isinstance(d, EnumDecl)}
    method_names: Dict[str, Set[str]] = {}
    for d in decls:
      if isinstance(d, FunctionDecl) and d.owner:
        method_names.setdefault(d.owner, set()).add(d.path.rsplit("::", 1)[-1])

    for decl in decls:
      self._check_module(model, decl.module, decl.path)
      if isinstance(decl, (StructDecl, EnumDecl, TraitDecl)):
        self._check_scope_target(decl.visibility, decl.module, decl.path)
      if isinstance(decl, StructDecl):
        model.structs[decl.path] = self._build_struct(decl)
      elif isinstance(decl, EnumDecl):
        model.enums[decl.path] = Enum(
          path=decl.path,
          module=decl.module,
          visibility=_visibility(decl.visibility),
          variants=tuple(decl.variants),
          order=self._next_order(),
          line=decl.line,
        )
      elif isinstance(decl, TraitDecl):
        trait, methods = self._build_trait(decl)
        model.traits[trait.path] = trait
        for method in methods:
          model.items[method.path] = method
      elif isinstance(decl, TraitImplDecl):
        model.impls[decl.path] = TraitImpl(
          path=decl.path,
          module=decl.module,
          trait=decl.trait,
          target=decl.target,
          unsafe=decl.unsafe,
          justification=parse_justification(decl.justification),
          order=self._next_order(),
          line=decl.line,
        )
      elif isinstance(decl, FunctionDecl):
        if decl.owner and decl.owner not in struct_decls and decl.owner not in enum_paths:
          raise ModelError(f"{decl.path}: unknown owner '{decl.owner}'")
        owner_struct = struct_decls.get(decl.owner) if decl.owner else None
        members: Optional[Set[str]] = None
        if owner_struct is not None:
          members = {f.name for f in owner_struct.fields} | method_names.get(decl.owner, set())
        model.items[decl.path] = self._build_function(decl, members)

    for item in model.items.values():
      target = model.items.get(item.implements) if item.implements else None
      if item.implements and (target is None or target.kind != ItemKind.TRAIT_METHOD):
        raise ModelError(f"{item.path}: implements unknown trait method '{item.implements}'")

    model.issues = list(self.issues)
    logger.debug(
      "Built model for %s: %d items, %d structs, %d traits, %d issues",
      model.crate,
      len(model.items),
      len(model.structs),
      len(model.traits),
      len(model.issues),
    )
    return model

  # --- Structure ---

  def _next_order(self) -> int:
    order = self._order
    self._order += 1
    return order

  def _register_modules(self, snapshot: CrateSnapshot, model: ItemModel) -> None:
    model.modules[CRATE_ROOT] = Module(path=CRATE_ROOT, visibility=Visibility(VisibilityKind.PUB))
    for decl in sorted(snapshot.modules, key=lambda m: m.path.count("::")):
      if decl.path == CRATE_ROOT:
        continue
      if not is_within(decl.path, CRATE_ROOT):
        raise ModelError(f"Module path must start with '{CRATE_ROOT}::': '{decl.path}'")
      if decl.path in model.modules:
        raise ModelError(f"Duplicate module '{decl.path}'")
      parent = parent_path(decl.path)
      if parent not in model.modules:
        raise ModelError(f"Module '{decl.path}' declared before its parent '{parent}'")
      self._check_scope_target(decl.visibility, parent, decl.path)
      model.modules[decl.path] = Module(path=decl.path, visibility=_visibility(decl.visibility))

  def _check_module(self, model: ItemModel, module: str, path: str) -> None:
    if module not in model.modules:
      raise ModelError(f"{path}: unknown module '{module}'")

  def _check_scope_target(self, vis: VisibilityDecl, module: str, path: str) -> None:
    if vis.kind == VisibilityKind.PUB_IN_PATH and not is_within(module, vis.path):
      raise ModelError(f"{path}: pub(in {vis.path}) must name an ancestor of '{module}'")

  @staticmethod
  def _check_unique_paths(decls: List[object]) -> None:
    seen: Set[str] = set()
    for decl in decls:
      paths = [decl.path]
      if isinstance(decl, TraitDecl):
        paths.extend(f"{decl.path}::{m.name}" for m in decl.methods)
      for path in paths:
        if path in seen:
          raise ModelError(f"Duplicate item path '{path}'")
        seen.add(path)

  # --- Requirements ---

  def _requirements(
    self,
    path: str,
    lines: Iterable[str],
    visible: Iterable[str],
    self_members: Optional[Iterable[str]] = None,
    rule: RuleId = RuleId.FUNCTION_COMMENT_2,
  ) -> RequirementSet:
    requirements = RequirementSet.from_lines(lines)
    visible = tuple(visible)
    for atom in requirements.atoms():
      bad = invisible_identifiers(atom, visible, self.config.ambient_names, self_members)
      if not bad:
        continue
      if self.config.strict_requirements:
        raise MalformedRequirementError(path, atom.text, bad)
      logger.debug("%s: malformed requirement '%s' (%s)", path, atom.text, bad)
      self.issues.append(ModelIssue(path=path, rule=rule, requirement=atom.text, identifiers=tuple(bad)))
    return requirements

  def _operations(self, ops: Iterable[OperationDecl]) -> Tuple[Operation, ...]:
    return tuple(
      Operation(
        op=UnsafeOpKind(op.op),
        target=op.target,
        args=tuple(op.args),
        receiver=op.receiver,
        fields=tuple(op.fields.items()),
        field=op.field,
        value=op.value,
        access=op.access,
        guards=RequirementSet.from_lines(op.guards),
        justification=parse_justification(op.justification),
        line=op.line,
      )
      for op in ops
    )

  # --- Entities ---

  def _build_struct(self, decl: StructDecl) -> Struct:
    for f in decl.fields:
      self._check_scope_target(f.visibility, decl.module, f"{decl.path}::{f.name}")
    fields = tuple(Field(name=f.name, visibility=_visibility(f.visibility)) for f in decl.fields)
    field_names = [f.name for f in fields]
    invariant = self._requirements(
      decl.path,
      decl.invariant,
      visible=["self", *field_names],
      self_members=field_names,
      rule=RuleId.STRUCT_COMMENT_1,
    )
    # Normalize bare field names to `self.<field>` so the invariant has one shape.
    invariant = invariant.substitute(names={name: f"self.{name}" for name in field_names})
    return Struct(
      path=decl.path,
      module=decl.module,
      visibility=_visibility(decl.visibility),
      fields=fields,
      invariant=invariant,
      order=self._next_order(),
      line=decl.line,
    )

  def _build_trait(self, decl: TraitDecl) -> Tuple[Trait, List[Item]]:
    invariant = self._requirements(decl.path, decl.invariant, visible=["self", "Self"])
    trait_order = self._next_order()
    vis = _visibility(decl.visibility)
    methods: List[Item] = []
    for m in decl.methods:
      path = f"{decl.path}::{m.name}"
      visible = (["self"] if m.receiver else []) + list(m.params)
      methods.append(
        Item(
          path=path,
          kind=ItemKind.TRAIT_METHOD,
          module=decl.module,
          visibility=vis,
          unsafe=m.unsafe,
          params=tuple(m.params),
          requirements=self._requirements(path, m.requirements, visible),
          owner=decl.path,
          body=self._operations(m.body),
          has_receiver=m.receiver,
          order=self._next_order(),
          line=m.line,
        )
      )
    trait = Trait(
      path=decl.path,
      module=decl.module,
      visibility=vis,
      unsafe=decl.unsafe,
      invariant=invariant,
      methods=tuple(m.path for m in methods),
      order=trait_order,
      line=decl.line,
    )
    return trait, methods

  def _build_function(self, decl: FunctionDecl, owner_members: Optional[Set[str]]) -> Item:
    kind = ItemKind(decl.kind)
    if kind != ItemKind.FUNCTION and not decl.owner:
      raise ModelError(f"{decl.path}: {kind.value} requires an owner")
    has_receiver = kind == ItemKind.METHOD
    self._check_scope_target(decl.visibility, decl.module, decl.path)
    visible = (["self"] if has_receiver else []) + list(decl.params)
    return Item(
      path=decl.path,
      kind=kind,
      module=decl.module,
      visibility=_visibility(decl.visibility),
      unsafe=decl.unsafe,
      params=tuple(decl.params),
      requirements=self._requirements(decl.path, decl.requirements, visible, owner_members),
      owner=decl.owner,
      body=self._operations(decl.body),
      constructor=decl.constructor,
      implements=decl.implements,
      has_receiver=has_receiver,
      order=self._next_order(),
      line=decl.line,
    )
