"""
Pydantic Schemas for Crate Snapshots.

This module defines the contract with the external front end: an immutable,
already-parsed description of a crate. The front end is responsible for
turning Rust source into these records; documentation is carried verbatim
(one requirement per line of a ``# Safety`` section) and justification
annotations are carried as raw text spans.

`CrateSnapshot.items` is a discriminated union on ``kind``. Its order is the
declaration order used to sort findings.
"""

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, model_validator

from unsafe_ledger.enums import UnsafeOpKind, VisibilityKind


class VisibilityDecl(BaseModel):
  """
  A declared visibility marker (``pub``, ``pub(crate)``, ``pub(in path)``...).
  """

  model_config = ConfigDict(frozen=True)

  kind: VisibilityKind = Field(VisibilityKind.PRIVATE, description="Visibility marker.")
  path: Optional[str] = Field(None, description="Target module for 'pub(in path)'.")

  @model_validator(mode="after")
  def _check_path(self) -> "VisibilityDecl":
    if self.kind == VisibilityKind.PUB_IN_PATH and not self.path:
      raise ValueError("pub_in_path visibility requires a 'path'")
    return self


def _coerce_visibility(value: object) -> object:
  if isinstance(value, str):
    return {"kind": value}
  return value


class _Decl(BaseModel):
  model_config = ConfigDict(frozen=True, extra="forbid")

  @model_validator(mode="before")
  @classmethod
  def _visibility_shorthand(cls, data: object) -> object:
    # Allow `"visibility": "pub"` as shorthand for `{"kind": "pub"}`.
    if isinstance(data, dict) and "visibility" in data:
      data = {**data, "visibility": _coerce_visibility(data["visibility"])}
    return data


class ModuleDecl(_Decl):
  """A module of the crate. The root module ``crate`` is implicit."""

  path: str
  visibility: VisibilityDecl = Field(default_factory=VisibilityDecl)


class OperationDecl(_Decl):
  """
  A safety-relevant operation inside an item body, in source order.
  """

  op: UnsafeOpKind = Field(..., description="Operation kind.")
  target: str = Field(..., description="Callee path, struct path, or operand expression.")
  args: List[str] = Field(default_factory=list, description="Call arguments (positional).")
  receiver: Optional[str] = Field(None, description="Receiver expression for method calls and field writes.")
  fields: Dict[str, str] = Field(default_factory=dict, description="Field initializers of a struct literal.")
  field: Optional[str] = Field(None, description="Field written by a field_write.")
  value: Optional[str] = Field(None, description="Value written by a field_write.")
  access: Literal["read", "write"] = Field("read", description="Access mode of a raw dereference.")
  guards: List[str] = Field(default_factory=list, description="Branch conditions enclosing the site.")
  justification: Optional[str] = Field(None, description="Raw SAFETY annotation text at the site.")
  line: Optional[int] = None


class FieldDecl(_Decl):
  name: str
  visibility: VisibilityDecl = Field(default_factory=VisibilityDecl)


class FunctionDecl(_Decl):
  """
  A free function, method (with receiver) or associated function.
  """

  kind: Literal["function", "method", "associated_function"] = "function"
  path: str
  module: str = "crate"
  visibility: VisibilityDecl = Field(default_factory=VisibilityDecl)
  unsafe: bool = False
  params: List[str] = Field(default_factory=list, description="Parameter names, excluding the receiver.")
  owner: Optional[str] = Field(None, description="Owning struct or enum for methods and associated functions.")
  constructor: bool = Field(False, description="True for associated functions that construct their owner.")
  implements: Optional[str] = Field(None, description="Trait method path this method implements.")
  requirements: List[str] = Field(default_factory=list, description="Documented safety requirements.")
  body: List[OperationDecl] = Field(default_factory=list)
  line: Optional[int] = None


class TraitMethodDecl(_Decl):
  name: str
  unsafe: bool = False
  receiver: bool = True
  params: List[str] = Field(default_factory=list)
  requirements: List[str] = Field(default_factory=list)
  body: List[OperationDecl] = Field(default_factory=list, description="Default method body, if any.")
  line: Optional[int] = None


class TraitDecl(_Decl):
  kind: Literal["trait"] = "trait"
  path: str
  module: str = "crate"
  visibility: VisibilityDecl = Field(default_factory=VisibilityDecl)
  unsafe: bool = False
  invariant: List[str] = Field(default_factory=list, description="Documented trait invariant (unsafe traits).")
  methods: List[TraitMethodDecl] = Field(default_factory=list)
  line: Optional[int] = None


class StructDecl(_Decl):
  kind: Literal["struct"] = "struct"
  path: str
  module: str = "crate"
  visibility: VisibilityDecl = Field(default_factory=VisibilityDecl)
  fields: List[FieldDecl] = Field(default_factory=list)
  invariant: List[str] = Field(default_factory=list, description="Documented type invariant over own fields.")
  line: Optional[int] = None


class EnumDecl(_Decl):
  kind: Literal["enum"] = "enum"
  path: str
  module: str = "crate"
  visibility: VisibilityDecl = Field(default_factory=VisibilityDecl)
  variants: List[str] = Field(default_factory=list)
  line: Optional[int] = None


class TraitImplDecl(_Decl):
  kind: Literal["trait_impl"] = "trait_impl"
  path: str = Field(..., description="Unique identifier of the impl block.")
  module: str = "crate"
  trait: str = Field(..., description="Implemented trait path (crate trait or external, e.g. 'Send').")
  target: str = Field(..., description="Implementing type path.")
  unsafe: bool = False
  justification: Optional[str] = None
  line: Optional[int] = None


def _item_tag(value: Any) -> str:
  kind = value.get("kind", "function") if isinstance(value, dict) else getattr(value, "kind", "function")
  if kind in ("method", "associated_function"):
    return "function"
  return kind


ItemDecl = Annotated[
  Union[
    Annotated[FunctionDecl, Tag("function")],
    Annotated[TraitDecl, Tag("trait")],
    Annotated[StructDecl, Tag("struct")],
    Annotated[EnumDecl, Tag("enum")],
    Annotated[TraitImplDecl, Tag("trait_impl")],
  ],
  Discriminator(_item_tag),
]


class CrateSnapshot(BaseModel):
  """
  Immutable, front-end produced description of one crate.
  """

  model_config = ConfigDict(frozen=True)

  name: str = Field("crate", description="Crate name, used for run-level findings.")
  modules: List[ModuleDecl] = Field(default_factory=list)
  items: List[ItemDecl] = Field(default_factory=list, description="Items in declaration order.")
