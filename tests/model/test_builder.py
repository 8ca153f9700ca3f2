"""
Tests for the Item Model Builder.

Verifies:
1.  **Structure**: module registration, declaration order, trait method expansion.
2.  **Requirement visibility**: parameters, receivers, own fields, malformed issues.
3.  **Normalization**: bare field names in invariants become ``self.<field>``.
4.  **Structural errors**: duplicates, unknown modules/owners, bad scope targets.
"""

import pytest

from tests.crate_builders import assoc, fn, method, snapshot, struct, trait
from unsafe_ledger.enums import ItemKind, RuleId, VisibilityKind
from unsafe_ledger.errors import MalformedRequirementError, ModelError
from unsafe_ledger.model.builder import ItemModelBuilder, invisible_identifiers
from unsafe_ledger.model.predicates import parse_dnf


def test_declaration_order_and_kinds(build):
  model = build(
    struct("crate::S", ["len"]),
    method("crate::S::len", "crate::S"),
    fn("crate::free"),
  )
  assert list(model.declaration_order) == ["crate::S", "crate::S::len", "crate::free"]
  assert model.items["crate::S::len"].kind == ItemKind.METHOD
  assert model.items["crate::S::len"].signature == ("self",)
  assert model.items["crate::free"].signature == ()


def test_trait_methods_become_items(build):
  model = build(
    trait(
      "crate::Reader",
      [
        {"name": "read_at", "unsafe": True, "params": ["idx"], "requirements": ["idx < self.len()"]},
        {"name": "create", "receiver": False},
      ],
      visibility="pub",
    )
  )
  read_at = model.items["crate::Reader::read_at"]
  assert read_at.kind == ItemKind.TRAIT_METHOD
  assert read_at.owner == "crate::Reader"
  assert read_at.has_receiver
  assert read_at.visibility.kind == VisibilityKind.PUB
  assert not model.items["crate::Reader::create"].has_receiver
  assert model.traits["crate::Reader"].methods == ("crate::Reader::read_at", "crate::Reader::create")
  assert model.issues == []


def test_invariant_is_normalized_to_self_fields(build):
  model = build(struct("crate::EvenNumber", ["value"], ["value % 2 == 0"]))
  inv = model.structs["crate::EvenNumber"].invariant
  assert [a.text for a in inv.atoms()] == ["self.value % 2 == 0"]
  assert model.structs["crate::EvenNumber"].invariant_fields == ("value",)


def test_invariant_with_self_form_is_kept(build):
  model = build(struct("crate::V", ["len", "cap"], ["self.len <= cap"]))
  assert [a.text for a in model.structs["crate::V"].invariant.atoms()] == ["self.len <= self.cap"]


def test_requirement_referencing_local_is_malformed(build):
  model = build(fn("crate::f", unsafe=True, params=["p"], requirements=["valid_for_reads(tmp)"]))
  (issue,) = model.issues_for("crate::f")
  assert issue.rule == RuleId.FUNCTION_COMMENT_2
  assert issue.identifiers == ("tmp",)
  assert "`tmp`" in issue.explanation


def test_free_function_cannot_reference_self(build):
  model = build(fn("crate::f", unsafe=True, requirements=["self.len > 0"]))
  assert [i.identifiers for i in model.issues] == [("self",)]


def test_method_may_reference_fields_and_methods(build):
  model = build(
    struct("crate::V", ["len", "cap"]),
    method("crate::V::capacity", "crate::V"),
    method("crate::V::set_len", "crate::V", unsafe=True, params=["n"], requirements=["n <= self.capacity()"]),
    method("crate::V::bad", "crate::V", unsafe=True, requirements=["self.missing > 0"]),
  )
  assert model.issues_for("crate::V::set_len") == []
  (issue,) = model.issues_for("crate::V::bad")
  assert issue.identifiers == ("self.missing",)


def test_associated_function_has_no_receiver(build):
  model = build(
    struct("crate::V", ["len"]),
    assoc("crate::V::new", "crate::V", unsafe=True, params=["n"], requirements=["self.len == n"]),
  )
  assert not model.items["crate::V::new"].has_receiver
  assert [i.identifiers for i in model.issues] == [("self",)]


def test_invariant_over_foreign_name_is_malformed(build):
  model = build(struct("crate::S", ["a"], ["a < LIMIT", "a < b"]))
  (issue,) = model.issues_for("crate::S")
  assert issue.rule == RuleId.STRUCT_COMMENT_1
  assert issue.identifiers == ("b",)


def test_prose_requirements_are_checked_through_backticks(build):
  model = build(fn("crate::f", unsafe=True, params=["p"], requirements=["`p` must outlive `buf`"]))
  assert [i.identifiers for i in model.issues] == [("buf",)]


def test_prose_subject_must_be_visible(build):
  model = build(fn("crate::f", unsafe=True, params=["p"], requirements=["tmp must be non-null", "p must be aligned"]))
  (issue,) = model.issues_for("crate::f")
  assert issue.identifiers == ("tmp",)
  assert issue.requirement == "tmp must be non-null"


def test_prose_invariant_is_normalized_by_whole_word(build):
  model = build(struct("crate::EvenNumber", ["value"], ["value even"]))
  inv = model.structs["crate::EvenNumber"].invariant
  assert [a.text for a in inv.atoms()] == ["self.value even"]
  assert model.structs["crate::EvenNumber"].invariant_fields == ("value",)
  assert model.issues == []


def test_ambient_names_are_visible(build):
  model = build(fn("crate::f", unsafe=True, params=["n"], requirements=["n * size_of(T) <= isize.MAX"]))
  assert model.issues == []


def test_strict_mode_raises(build):
  with pytest.raises(MalformedRequirementError) as exc:
    build(fn("crate::f", unsafe=True, requirements=["x > 0"]), strict_requirements=True)
  assert exc.value.path == "crate::f"
  assert exc.value.identifiers == ["x"]


def test_invisible_identifiers_helper():
  (conj,) = parse_dnf("self.len + n <= self.cap")
  assert invisible_identifiers(conj[0], ["self"], set(), self_members=["len"]) == ["n", "self.cap"]


def test_modules_are_registered_with_parents(build):
  model = build(modules=["crate::a", {"path": "crate::a::b", "visibility": "pub_crate"}])
  assert set(model.modules) == {"crate", "crate::a", "crate::a::b"}
  assert model.modules["crate::a::b"].visibility.kind == VisibilityKind.PUB_CRATE
  assert model.modules["crate::a::b"].parent == "crate::a"


# Scope target that is not an ancestor of crate::a.
OUTSIDE_A = {"kind": "pub_in_path", "path": "crate::b"}


@pytest.mark.parametrize(
  "items, modules, message",
  [
    ([fn("crate::f"), fn("crate::f")], [], "Duplicate item path"),
    ([fn("crate::m::f")], [], "unknown module"),
    ([method("crate::S::m", "crate::S")], [], "unknown owner"),
    ([{"kind": "method", "path": "crate::m"}], [], "requires an owner"),
    ([], ["crate::x::y"], "before its parent"),
    ([], ["other::x"], "must start with"),
    ([fn("crate::f", implements="crate::g"), fn("crate::g")], [], "implements unknown trait method"),
    ([fn("crate::a::f", visibility={"kind": "pub_in_path", "path": "crate::b"})], ["crate::a", "crate::b"], "ancestor"),
    ([struct("crate::a::S", [], visibility=OUTSIDE_A)], ["crate::a", "crate::b"], r"crate::a::S: pub\(in crate::b\)"),
    ([trait("crate::a::T", [], visibility=OUTSIDE_A)], ["crate::a", "crate::b"], r"crate::a::T: pub\(in crate::b\)"),
    (
      [{"kind": "enum", "path": "crate::a::E", "module": "crate::a", "visibility": OUTSIDE_A}],
      ["crate::a", "crate::b"],
      r"crate::a::E: pub\(in crate::b\)",
    ),
    (
      [struct("crate::a::S", [{"name": "x", "visibility": OUTSIDE_A}])],
      ["crate::a", "crate::b"],
      r"crate::a::S::x: pub\(in crate::b\)",
    ),
  ],
)
def test_structural_errors(items, modules, message):
  with pytest.raises(ModelError, match=message):
    ItemModelBuilder().build(snapshot(*items, modules=modules))


def test_duplicate_trait_method_path():
  items = [trait("crate::T", [{"name": "m"}]), fn("crate::T::m")]
  with pytest.raises(ModelError, match="Duplicate"):
    ItemModelBuilder().build(snapshot(*items))


def test_model_is_rebuilt_identically(build):
  items = [struct("crate::S", ["a"], ["a > 0"]), fn("crate::f", unsafe=True, params=["p"], requirements=["aligned(p)"])]
  first, second = build(*items), build(*items)
  assert first.items == second.items
  assert first.structs == second.structs
