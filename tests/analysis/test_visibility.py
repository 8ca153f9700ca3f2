"""
Tests for the Visibility Resolver.

Verifies:
1.  **Scope roots**: private, pub(super), pub(in path), pub(crate), pub.
2.  **Chains**: the narrowest scope along enclosing modules and owners wins.
3.  **Inheritance**: trait methods, trait impl methods and enum variants.
4.  **Boundaries**: containment and exposure under each criterion.
"""

import pytest

from tests.crate_builders import fn, method, struct, trait
from unsafe_ledger.analysis.visibility import EXTERNAL, VisibilityResolver, narrowest
from unsafe_ledger.enums import SoundnessCriterion

MODULES = [
  "crate::a",
  {"path": "crate::a::b", "visibility": "private"},
  {"path": "crate::c", "visibility": "pub_crate"},
]


@pytest.fixture
def resolver(build):
  model = build(
    fn("crate::top", visibility="pub"),
    fn("crate::a::b::f", visibility="pub"),
    fn("crate::a::g", visibility="pub_super"),
    fn("crate::a::b::h", visibility={"kind": "pub_in_path", "path": "crate::a"}),
    fn("crate::a::hidden"),
    fn("crate::c::helper", visibility="pub"),
    {"kind": "enum", "path": "crate::Color", "visibility": "pub", "variants": ["Red", "Green"]},
    {"kind": "enum", "path": "crate::a::Inner", "module": "crate::a", "variants": ["One"]},
    struct(
      "crate::a::S",
      [{"name": "len", "visibility": "pub"}, "cap"],
      ["len <= cap"],
      visibility="pub",
    ),
    method("crate::a::S::push", "crate::a::S", visibility="pub"),
    method("crate::a::S::grow", "crate::a::S"),
    trait("crate::c::T", [{"name": "go"}], visibility="pub"),
    method("crate::a::S::go", "crate::a::S", implements="crate::c::T::go"),
    modules=MODULES,
  )
  return VisibilityResolver(model)


def test_narrowest():
  assert narrowest(None, "crate::a") == "crate::a"
  assert narrowest("crate", "crate::a::b") == "crate::a::b"
  assert narrowest("crate::a", None) == "crate::a"


def test_pub_at_root_is_universal(resolver):
  assert resolver.scope_of("crate::top") is None
  assert resolver.can_see("crate::top", EXTERNAL)


def test_private_module_narrows_pub_item(resolver):
  assert resolver.module_scope("crate::a::b") == "crate::a"
  assert resolver.scope_of("crate::a::b::f") == "crate::a"
  assert resolver.can_see("crate::a::b::f", "crate::a")
  assert not resolver.can_see("crate::a::b::f", "crate")
  assert not resolver.can_see("crate::a::b::f", EXTERNAL)


def test_pub_super_and_pub_in_path(resolver):
  assert resolver.scope_of("crate::a::g") == "crate"
  assert resolver.can_see("crate::a::g", "crate::c")
  assert not resolver.can_see("crate::a::g", EXTERNAL)
  assert resolver.scope_of("crate::a::b::h") == "crate::a"


def test_default_private(resolver):
  assert resolver.scope_of("crate::a::hidden") == "crate::a"
  assert resolver.can_see("crate::a::hidden", "crate::a::b")


def test_pub_crate_module(resolver):
  assert resolver.scope_of("crate::c::helper") == "crate"
  assert not resolver.can_see("crate::c::helper", EXTERNAL)


def test_enum_variants_inherit_enum_scope(resolver):
  assert resolver.scope_of("crate::Color::Red") is None
  assert resolver.scope_of("crate::a::Inner::One") == "crate::a"
  with pytest.raises(KeyError):
    resolver.scope_of("crate::Color::Blue")


def test_trait_items_inherit_trait_scope(resolver):
  assert resolver.scope_of("crate::c::T") == "crate"
  assert resolver.scope_of("crate::c::T::go") == "crate"
  # The impl method has no marker of its own but follows the trait.
  assert resolver.scope_of("crate::a::S::go") == "crate"


def test_methods_bounded_by_owner(resolver):
  assert resolver.scope_of("crate::a::S::push") is None
  assert resolver.scope_of("crate::a::S::grow") == "crate::a"


def test_field_scope(resolver):
  s = resolver.model.structs["crate::a::S"]
  assert resolver.field_scope(s, "len") is None
  assert resolver.field_scope(s, "cap") == "crate::a"
  with pytest.raises(KeyError):
    resolver.field_scope(s, "missing")


def test_boundary_containment(resolver):
  items = resolver.model.items
  push, helper, f, top = (
    items["crate::a::S::push"],
    items["crate::a::g"],
    items["crate::a::b::f"],
    items["crate::top"],
  )

  by_struct = resolver.boundary("crate::a::S", SoundnessCriterion.STRUCT)
  assert by_struct.contains(push)
  assert not by_struct.contains(helper)

  by_module = resolver.boundary("crate::a::S", SoundnessCriterion.MODULE)
  assert by_module.contains(helper)
  assert by_module.contains(f)
  assert not by_module.contains(top)

  by_crate = resolver.boundary("crate::a::S", SoundnessCriterion.CRATE)
  assert all(by_crate.contains(i) for i in (push, helper, f, top))


def test_exposed_outside(resolver):
  items = resolver.model.items
  grow, push, g = items["crate::a::S::grow"], items["crate::a::S::push"], items["crate::a::g"]

  by_struct = resolver.boundary("crate::a::S", SoundnessCriterion.STRUCT)
  assert resolver.exposed_outside(grow, by_struct)

  by_module = resolver.boundary("crate::a::S", SoundnessCriterion.MODULE)
  assert not resolver.exposed_outside(grow, by_module)
  assert resolver.exposed_outside(push, by_module)
  assert resolver.exposed_outside(g, by_module)

  by_crate = resolver.boundary("crate::a::S", SoundnessCriterion.CRATE)
  assert not resolver.exposed_outside(g, by_crate)
  assert resolver.exposed_outside(push, by_crate)


def test_field_exposure(resolver):
  s = resolver.model.structs["crate::a::S"]
  for criterion in SoundnessCriterion:
    boundary = resolver.boundary(s.path, criterion)
    assert resolver.field_exposed(s, "len", boundary)
    assert not resolver.field_exposed(s, "cap", boundary)
