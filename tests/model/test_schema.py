"""
Tests for the Crate Snapshot Schema.

Verifies that front-end records are validated on construction:
discriminated item kinds, visibility shorthand, and rejection of
inconsistent records.
"""

import pytest
from pydantic import ValidationError

from unsafe_ledger.enums import UnsafeOpKind, VisibilityKind
from unsafe_ledger.model.schema import (
  CrateSnapshot,
  FunctionDecl,
  StructDecl,
  TraitDecl,
  TraitImplDecl,
  VisibilityDecl,
)


def test_items_are_discriminated_by_kind():
  snap = CrateSnapshot.model_validate(
    {
      "items": [
        {"path": "crate::f"},
        {"kind": "method", "path": "crate::S::m", "owner": "crate::S"},
        {"kind": "struct", "path": "crate::S"},
        {"kind": "trait", "path": "crate::T", "methods": [{"name": "m"}]},
        {"kind": "trait_impl", "path": "crate::impl_T", "trait": "crate::T", "target": "crate::S"},
      ]
    }
  )
  types = [type(item) for item in snap.items]
  assert types == [FunctionDecl, FunctionDecl, StructDecl, TraitDecl, TraitImplDecl]
  assert snap.items[1].kind == "method"
  assert snap.name == "crate"


def test_visibility_shorthand():
  decl = FunctionDecl.model_validate({"path": "crate::f", "visibility": "pub_crate"})
  assert decl.visibility.kind == VisibilityKind.PUB_CRATE


def test_pub_in_path_requires_path():
  with pytest.raises(ValidationError):
    VisibilityDecl(kind=VisibilityKind.PUB_IN_PATH)
  assert VisibilityDecl(kind="pub_in_path", path="crate::a").path == "crate::a"


def test_operations_are_typed():
  decl = FunctionDecl.model_validate(
    {
      "path": "crate::f",
      "body": [
        {"op": "raw_deref", "target": "p", "access": "write", "guards": ["x > 0"]},
        {"op": "struct_literal", "target": "crate::S", "fields": {"a": "1"}},
      ],
    }
  )
  assert decl.body[0].op == UnsafeOpKind.RAW_DEREF
  assert decl.body[0].access == "write"
  assert decl.body[1].fields == {"a": "1"}


@pytest.mark.parametrize(
  "record",
  [
    {"kind": "macro", "path": "crate::m"},
    {"path": "crate::f", "unknown_field": True},
    {"path": "crate::f", "body": [{"op": "transmute", "target": "x"}]},
    {"path": "crate::f", "body": [{"op": "raw_deref", "target": "p", "access": "exec"}]},
  ],
)
def test_invalid_records_are_rejected(record):
  with pytest.raises(ValidationError):
    CrateSnapshot.model_validate({"items": [record]})


def test_snapshot_is_frozen():
  snap = CrateSnapshot(name="demo")
  with pytest.raises(ValidationError):
    snap.name = "other"
