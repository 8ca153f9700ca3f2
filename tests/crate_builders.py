"""
Builders for crate snapshot records.

Tests describe crates with these helpers so that the records read like the
Rust they model: ``fn("crate::foo", unsafe=True, params=["p"])``.
"""

from typing import Any, Dict, List, Optional


def fn(path: str, **kwargs: Any) -> Dict[str, Any]:
  """Free function record. Module defaults to the path's parent."""
  kwargs.setdefault("module", path.rsplit("::", 1)[0])
  return {"kind": "function", "path": path, **kwargs}


def method(path: str, owner: str, **kwargs: Any) -> Dict[str, Any]:
  """Method (with receiver) owned by `owner`."""
  kwargs.setdefault("module", owner.rsplit("::", 1)[0])
  return {"kind": "method", "path": path, "owner": owner, **kwargs}


def assoc(path: str, owner: str, **kwargs: Any) -> Dict[str, Any]:
  """Associated function (no receiver) owned by `owner`."""
  kwargs.setdefault("module", owner.rsplit("::", 1)[0])
  return {"kind": "associated_function", "path": path, "owner": owner, **kwargs}


def struct(path: str, fields: List[Any], invariant: Optional[List[str]] = None, **kwargs: Any) -> Dict[str, Any]:
  """Struct record. Fields given as bare names are private."""
  kwargs.setdefault("module", path.rsplit("::", 1)[0])
  field_records = [f if isinstance(f, dict) else {"name": f} for f in fields]
  return {"kind": "struct", "path": path, "fields": field_records, "invariant": invariant or [], **kwargs}


def trait(path: str, methods: List[Dict[str, Any]], **kwargs: Any) -> Dict[str, Any]:
  kwargs.setdefault("module", path.rsplit("::", 1)[0])
  return {"kind": "trait", "path": path, "methods": methods, **kwargs}


def trait_impl(path: str, trait_path: str, target: str, **kwargs: Any) -> Dict[str, Any]:
  kwargs.setdefault("module", target.rsplit("::", 1)[0])
  return {"kind": "trait_impl", "path": path, "trait": trait_path, "target": target, **kwargs}


def call(target: str, *args: str, **kwargs: Any) -> Dict[str, Any]:
  return {"op": "call", "target": target, "args": list(args), **kwargs}


def deref(target: str, **kwargs: Any) -> Dict[str, Any]:
  return {"op": "raw_deref", "target": target, **kwargs}


def literal(target: str, **fields: str) -> Dict[str, Any]:
  return {"op": "struct_literal", "target": target, "fields": fields}


def write(target: str, field: str, value: str, receiver: str = "self", **kwargs: Any) -> Dict[str, Any]:
  return {"op": "field_write", "target": target, "field": field, "value": value, "receiver": receiver, **kwargs}


def snapshot(*items: Dict[str, Any], modules: Optional[List[Any]] = None, name: str = "demo") -> Dict[str, Any]:
  """Snapshot mapping. Modules may be given as bare paths (public) or records."""
  module_records = [{"path": m, "visibility": "pub"} if isinstance(m, str) else m for m in modules or []]
  return {"name": name, "modules": module_records, "items": list(items)}
