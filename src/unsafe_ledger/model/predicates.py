"""
Safety Requirement Predicates.

Requirements are written as expression-syntax predicates in documentation
(``valid_for_reads(p)``, ``x % 2 == 0``, ``self.len <= self.cap``) and are
parsed with LibCST. Rust spellings of the logical operators (``&&``, ``||``,
``!``) and paths (``a::b``) are accepted; the head of a path names a module
or type, never a variable. Lines that are not expressions are kept as *prose*
requirements. Their references are the back-quoted names (```p` must be
non-null``), ``self.<member>`` spellings, and the leading subject of a
sentence such as ``x even`` or ``tmp must be non-null``. Substitution in
prose renames whole words.

A `RequirementSet` is held in disjunctive normal form. Every documented line
is one conjunct; negation is pushed down to atoms so that ``not (x > 0)`` and
``x <= 0`` are the same atom.

Justification annotations (``SAFETY: aligned(p): derived from a reference``)
are parsed into `Claim` objects naming the atoms they assert.
"""

import functools
import re
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

import libcst as cst

from unsafe_ledger.model.logic import first_uncovered, satisfiable

# Predicate name of the marker requirement stating reliance on a type invariant.
INVARIANT_MARKER = "invariant"

_TOKEN_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*|\d+(?:\.\d+)?|\S")
_BACKTICK_RE = re.compile(r"`([^`]+)`")
_IDENT_RE = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_]*)(?:\.([A-Za-z_][A-Za-z0-9_]*))?")
_WORD_RE = re.compile(r"(?<![\w.])(self\.[A-Za-z_]\w*|[A-Za-z_]\w*)")
_PATH_ROOT_RE = re.compile(r"(?<![\w:])([A-Za-z_]\w*)\s*::")
_CLAIM_COLON_RE = re.compile(r"(?<!:):(?!:)")
_SUBJECT_RE = re.compile(r"^([a-z_][a-z0-9_]*)\s+(\S+)(\s+\S)?")
_SAFETY_MARKER_RE = re.compile(r"^\s*(?://+\s*)?SAFETY\s*:\s*", re.IGNORECASE)
_BULLET_RE = re.compile(r"^\s*(?://+\s*)?(?:(?:[-*•]|\d+[.)])\s+)?")
_SIGIL_RE = re.compile(r"^\s*(?:&\s*mut\s+|&|\*\s*(?:const|mut)?\s*)+")
_CAST_RE = re.compile(r"\s+as\s+.*$")

_FLIPPED = {
  cst.LessThan: cst.GreaterThanEqual,
  cst.GreaterThanEqual: cst.LessThan,
  cst.GreaterThan: cst.LessThanEqual,
  cst.LessThanEqual: cst.GreaterThan,
  cst.Equal: cst.NotEqual,
  cst.NotEqual: cst.Equal,
  cst.In: cst.NotIn,
  cst.NotIn: cst.In,
  cst.Is: cst.IsNot,
  cst.IsNot: cst.Is,
}

_OP_SYMBOLS = {
  cst.LessThan: "<",
  cst.LessThanEqual: "<=",
  cst.GreaterThan: ">",
  cst.GreaterThanEqual: ">=",
  cst.Equal: "==",
  cst.NotEqual: "!=",
}

_MIRRORED = {"<": ">", "<=": ">=", ">": "<", ">=": "<=", "==": "==", "!=": "!="}

_ATOMIC_NODES = (cst.Name, cst.Attribute, cst.Call, cst.Subscript, cst.Integer, cst.Float, cst.SimpleString)

_EMPTY_MODULE = cst.Module(body=[])

# Leading words that open a sentence without naming a variable.
_PROSE_OPENERS = frozenset(
  {"a", "an", "the", "this", "that", "these", "those", "it", "its", "each", "every", "all", "any", "no"}
  | {"both", "either", "neither", "there", "caller", "callers", "we", "you", "they", "one", "only"}
)

# Verbs that make the leading word of a prose line its subject.
_PROSE_VERBS = frozenset(
  {"must", "is", "are", "has", "have", "should", "shall", "may", "can", "cannot", "remains", "stays"}
  | {"points", "outlives", "lives", "refers", "contains", "holds"}
)


def canonical_key(text: str) -> str:
  """
  Normalizes predicate text so that spacing differences do not matter.

  Args:
      text: Rendered expression.

  Returns:
      str: Space-separated token sequence.
  """
  return " ".join(_TOKEN_RE.findall(text))


def render(node: cst.CSTNode) -> str:
  """Renders a LibCST node back to source text."""
  return _EMPTY_MODULE.code_for_node(node)


def _pythonize(text: str) -> str:
  text = text.strip().rstrip(".")
  text = text.replace("&&", " and ").replace("||", " or ").replace("::", ".")
  return re.sub(r"!(?!=)", " not ", text).strip()


def _try_parse(text: str) -> Optional[cst.BaseExpression]:
  candidate = _pythonize(text)
  if not candidate:
    return None
  try:
    return cst.parse_expression(candidate)
  except cst.ParserSyntaxError:
    return None


def _path_roots(text: str) -> FrozenSet[str]:
  """Heads of Rust paths (``ptr`` in ``ptr::aligned(p)``)."""
  return frozenset(_PATH_ROOT_RE.findall(text))


def _prose_subject(text: str) -> Optional[str]:
  """
  Finds the variable a prose line is about.

  The leading lowercase word counts when the line is ``<name> <adjective>``
  (``x even``) or ``<name> <verb> ...`` (``tmp must be non-null``).
  """
  match = _SUBJECT_RE.match(text)
  if match is None:
    return None
  word, follower, more = match.groups()
  if word in _PROSE_OPENERS:
    return None
  if more is None or follower.lower() in _PROSE_VERBS:
    return word
  return None


def _strip_parens(node: cst.BaseExpression) -> cst.BaseExpression:
  if getattr(node, "lpar", None):
    return node.with_changes(lpar=[], rpar=[])
  return node


def _numeric(node: cst.BaseExpression) -> Optional[float]:
  node = _strip_parens(node)
  sign = 1.0
  if isinstance(node, cst.UnaryOperation) and isinstance(node.operator, cst.Minus):
    sign = -1.0
    node = _strip_parens(node.expression)
  if isinstance(node, cst.Integer):
    try:
      return sign * int(node.value.replace("_", ""), 0)
    except ValueError:
      return sign * float(node.value.replace("_", ""))
  if isinstance(node, cst.Float):
    return sign * float(node.value.replace("_", ""))
  return None


@functools.lru_cache(maxsize=1024)
def parse_operand(text: str) -> cst.BaseExpression:
  """
  Parses an operand expression from a call site or field initializer.

  Reference sigils (``&``, ``&mut``, ``*const``) and trailing ``as`` casts are
  dropped; only the identifiers matter for matching.

  Args:
      text: The operand as written at the site.

  Returns:
      cst.BaseExpression: The parsed operand. Unparseable operands become an
      opaque name that no signature can see.
  """
  cleaned = _CAST_RE.sub("", _SIGIL_RE.sub("", text.strip())).replace("::", ".")
  try:
    return cst.parse_expression(cleaned)
  except cst.ParserSyntaxError:
    return cst.Name("__opaque_operand__")


class _IdentifierCollector(cst.CSTVisitor):
  """
  Collects the root identifiers an expression refers to.

  Callees of predicate calls (``aligned`` in ``aligned(p)``), attribute names
  and keyword names are not references, and neither are the heads of Rust
  paths listed in `paths`. Members accessed on ``self`` are recorded
  separately.
  """

  def __init__(self, paths: FrozenSet[str] = frozenset()) -> None:
    self.paths = paths
    self.names: Set[str] = set()
    self.self_members: Set[str] = set()

  def visit_Name(self, node: cst.Name) -> Optional[bool]:
    self.names.add(node.value)
    return False

  def visit_Attribute(self, node: cst.Attribute) -> Optional[bool]:
    current = node
    while isinstance(current.value, cst.Attribute):
      current = current.value
    root = current.value
    if isinstance(root, cst.Name):
      if root.value in self.paths:
        return False
      self.names.add(root.value)
      if root.value == "self":
        self.self_members.add(current.attr.value)
    else:
      root.visit(self)
    return False

  def visit_Call(self, node: cst.Call) -> Optional[bool]:
    if not isinstance(node.func, cst.Name):
      node.func.visit(self)
    for arg in node.args:
      arg.value.visit(self)
    return False


class _Substituter(cst.CSTTransformer):
  """
  Renames identifiers in an expression.

  `names` maps root identifiers to replacement expressions; `self_fields`
  maps members of ``self`` (``self.len``) to replacements. Path heads in
  `paths` are left alone.
  """

  def __init__(
    self,
    names: Dict[str, cst.BaseExpression],
    self_fields: Dict[str, cst.BaseExpression],
    paths: FrozenSet[str] = frozenset(),
  ) -> None:
    self.names = names
    self.self_fields = self_fields
    self.paths = paths

  @staticmethod
  def _guarded(node: cst.BaseExpression) -> cst.BaseExpression:
    if isinstance(node, _ATOMIC_NODES) or getattr(node, "lpar", None):
      return node
    return node.with_changes(lpar=[cst.LeftParen()], rpar=[cst.RightParen()])

  def visit_Attribute(self, node: cst.Attribute) -> Optional[bool]:
    return False

  def leave_Attribute(self, original_node: cst.Attribute, updated_node: cst.Attribute) -> cst.BaseExpression:
    value = original_node.value
    if isinstance(value, cst.Name) and value.value == "self" and original_node.attr.value in self.self_fields:
      return self._guarded(self.self_fields[original_node.attr.value])
    if isinstance(value, cst.Name) and value.value in self.paths:
      return original_node
    return original_node.with_changes(value=value.visit(self))

  def visit_Call(self, node: cst.Call) -> Optional[bool]:
    return False

  def leave_Call(self, original_node: cst.Call, updated_node: cst.Call) -> cst.BaseExpression:
    func = original_node.func
    if not isinstance(func, cst.Name):
      func = func.visit(self)
    args = []
    for arg in original_node.args:
      value = arg.value
      if isinstance(value, cst.Name) and value.value in self.names:
        # Argument position needs no grouping parentheses.
        args.append(arg.with_changes(value=self.names[value.value]))
      else:
        args.append(arg.with_changes(value=value.visit(self)))
    return original_node.with_changes(func=func, args=args)

  def leave_Name(self, original_node: cst.Name, updated_node: cst.Name) -> cst.BaseExpression:
    replacement = self.names.get(original_node.value)
    if replacement is None:
      return updated_node
    return self._guarded(replacement)


@dataclass(frozen=True)
class Requirement:
  """
  An atomic safety predicate.
  """

  text: str
  """Rendered predicate text."""

  key: str
  """Canonical comparison key; two atoms are the same requirement iff keys match."""

  identifiers: FrozenSet[str] = frozenset()
  """Root identifiers referenced (parameters, ``self``, field names)."""

  self_members: FrozenSet[str] = frozenset()
  """Members accessed on ``self``."""

  bound: Optional[Tuple[str, str, float]] = None
  """``(lhs_key, op, number)`` for comparisons against a numeric literal."""

  negates: Optional[str] = None
  """Key of the atom this one negates, for ``not`` atoms."""

  prose: bool = False
  """True when the text is not an expression."""

  node: Optional[cst.BaseExpression] = field(default=None, compare=False, hash=False, repr=False)

  paths: FrozenSet[str] = field(default=frozenset(), compare=False, hash=False, repr=False)
  """Heads of Rust paths in the original text; not references."""

  words: FrozenSet[str] = field(default=frozenset(), compare=False, hash=False, repr=False)
  """Every whole word of a prose line, the candidates for renaming."""

  @classmethod
  def from_node(cls, node: cst.BaseExpression, paths: FrozenSet[str] = frozenset()) -> "Requirement":
    """
    Builds an atom from an expression node.

    Args:
        node: The predicate expression.
        paths: Heads of Rust paths written in the source line.

    Returns:
        Requirement: The atom.
    """
    node = _strip_parens(node)
    text = render(node)
    collector = _IdentifierCollector(paths)
    node.visit(collector)

    bound = None
    if isinstance(node, cst.Comparison) and len(node.comparisons) == 1:
      target = node.comparisons[0]
      op = _OP_SYMBOLS.get(type(target.operator))
      if op is not None:
        right = _numeric(target.comparator)
        left = _numeric(node.left)
        if right is not None:
          bound = (canonical_key(render(_strip_parens(node.left))), op, right)
        elif left is not None:
          bound = (canonical_key(render(_strip_parens(target.comparator))), _MIRRORED[op], left)

    negates = None
    if isinstance(node, cst.UnaryOperation) and isinstance(node.operator, cst.Not):
      negates = canonical_key(render(_strip_parens(node.expression)))

    return cls(
      text=text,
      key=canonical_key(text),
      identifiers=frozenset(collector.names),
      self_members=frozenset(collector.self_members),
      bound=bound,
      negates=negates,
      node=node,
      paths=frozenset(paths),
    )

  @classmethod
  def from_prose(cls, text: str) -> "Requirement":
    """
    Builds an atom from free text.

    References are back-quoted names, ``self.<member>`` spellings anywhere in
    the line, and the sentence subject (see `_prose_subject`).

    Args:
        text: The documentation line.

    Returns:
        Requirement: The prose atom.
    """
    clean = " ".join(text.split())
    names: Set[str] = set()
    members: Set[str] = set()
    words: Set[str] = set()
    for token in _WORD_RE.findall(clean):
      root, _, member = token.partition(".")
      words.add(root)
      if member:
        names.add(root)
        members.add(member)
    for span in _BACKTICK_RE.findall(clean):
      match = _IDENT_RE.match(span)
      if match:
        names.add(match.group(1))
    subject = _prose_subject(clean)
    if subject is not None:
      names.add(subject)
    return cls(
      text=clean,
      key="prose: " + canonical_key(clean.lower().rstrip(".")),
      identifiers=frozenset(names),
      self_members=frozenset(members),
      prose=True,
      words=frozenset(words),
    )

  @property
  def is_marker(self) -> bool:
    """True for the ``invariant(self)`` documentation marker."""
    return (
      isinstance(self.node, cst.Call)
      and isinstance(self.node.func, cst.Name)
      and self.node.func.value == INVARIANT_MARKER
    )

  def substitute(
    self,
    names: Optional[Dict[str, str]] = None,
    self_fields: Optional[Dict[str, str]] = None,
  ) -> "Requirement":
    """
    Renames identifiers, e.g. callee parameters to call-site arguments.

    Args:
        names: Root identifier -> replacement expression text.
        self_fields: Member of ``self`` -> replacement expression text.

    Returns:
        Requirement: The renamed atom (``self`` if nothing applies).
    """
    candidates = self.words if self.prose else self.identifiers
    names = {k: v for k, v in (names or {}).items() if k in candidates and k != v}
    self_fields = {k: v for k, v in (self_fields or {}).items() if k in self.self_members}
    if not names and not self_fields:
      return self
    if self.prose:
      return self._substitute_prose(names, self_fields)
    transformer = _Substituter(
      {k: parse_operand(v) for k, v in names.items()},
      {k: parse_operand(v) for k, v in self_fields.items()},
      self.paths,
    )
    return Requirement.from_node(self.node.visit(transformer), self.paths)

  def _substitute_prose(self, names: Dict[str, str], self_fields: Dict[str, str]) -> "Requirement":
    def _replace(match: "re.Match[str]") -> str:
      token = match.group(1)
      root, _, member = token.partition(".")
      if not member:
        return names.get(root, token)
      if root == "self" and member in self_fields:
        return self_fields[member]
      if root in names:
        return f"{names[root]}.{member}"
      return token

    return Requirement.from_prose(_WORD_RE.sub(_replace, self.text))

  def __str__(self) -> str:
    return self.text


Conjunction = Tuple[Requirement, ...]


def _dedupe(atoms: Iterable[Requirement]) -> Conjunction:
  seen: Set[str] = set()
  result: List[Requirement] = []
  for atom in atoms:
    if atom.key not in seen:
      seen.add(atom.key)
      result.append(atom)
  return tuple(result)


def _negated_atom(node: cst.BaseExpression, paths: FrozenSet[str] = frozenset()) -> Requirement:
  node = _strip_parens(node)
  if isinstance(node, cst.Comparison) and len(node.comparisons) == 1:
    target = node.comparisons[0]
    flipped = _FLIPPED.get(type(target.operator))
    if flipped is not None:
      return Requirement.from_node(node.with_changes(comparisons=[target.with_changes(operator=flipped())]), paths)
  if isinstance(node, cst.Name) and node.value in ("True", "False"):
    return Requirement.from_node(cst.Name("False" if node.value == "True" else "True"))
  return Requirement.from_node(cst.UnaryOperation(operator=cst.Not(), expression=node), paths)


def _to_dnf(node: cst.BaseExpression, negate: bool = False, paths: FrozenSet[str] = frozenset()) -> List[Conjunction]:
  node = _strip_parens(node)

  if isinstance(node, cst.BooleanOperation):
    left = _to_dnf(node.left, negate, paths)
    right = _to_dnf(node.right, negate, paths)
    is_and = isinstance(node.operator, cst.And)
    if is_and != negate:
      return [_dedupe(a + b) for a in left for b in right]
    return left + right

  if isinstance(node, cst.UnaryOperation) and isinstance(node.operator, cst.Not):
    return _to_dnf(node.expression, not negate, paths)

  if isinstance(node, cst.Comparison) and len(node.comparisons) > 1:
    # Chained comparison: a < b <= c is (a < b) and (b <= c)
    pairs = []
    left = node.left
    for target in node.comparisons:
      pairs.append(cst.Comparison(left=left, comparisons=[target]))
      left = target.comparator
    if negate:
      return [(_negated_atom(p, paths),) for p in pairs]
    return [tuple(Requirement.from_node(p, paths) for p in pairs)]

  if negate:
    return [(_negated_atom(node, paths),)]
  return [(Requirement.from_node(node, paths),)]


def parse_dnf(text: str) -> List[Conjunction]:
  """
  Parses one documented requirement line into disjunctive normal form.

  Args:
      text: The requirement text.

  Returns:
      List of conjunctions. Prose lines yield a single one-atom conjunction.
  """
  node = _try_parse(text)
  if node is None:
    return [(Requirement.from_prose(text),)]
  return _to_dnf(node, paths=_path_roots(text))


@dataclass(frozen=True)
class RequirementSet:
  """
  A safety contract in disjunctive normal form.

  An empty `disjuncts` tuple means there is no requirement at all.
  """

  disjuncts: Tuple[Conjunction, ...] = ()

  @classmethod
  def build(cls, disjuncts: Iterable[Iterable[Requirement]]) -> "RequirementSet":
    """
    Normalizes disjuncts: duplicates removed, and a trivially true
    (empty) disjunct collapses the whole set to empty.
    """
    result: List[Conjunction] = []
    seen: Set[Tuple[str, ...]] = set()
    for conj in disjuncts:
      conj = _dedupe(conj)
      if not conj:
        return cls(())
      signature = tuple(sorted(a.key for a in conj))
      if signature not in seen:
        seen.add(signature)
        result.append(conj)
    return cls(tuple(result))

  @classmethod
  def from_lines(cls, lines: Iterable[str]) -> "RequirementSet":
    """
    Builds the conjunction of documented lines.

    Args:
        lines: Documentation lines, one requirement (possibly compound) each.

    Returns:
        RequirementSet: The parsed contract.
    """
    current: List[Conjunction] = [()]
    for line in lines:
      if not line or not line.strip():
        continue
      alternatives = parse_dnf(line)
      current = [_dedupe(a + b) for a in current for b in alternatives]
    if current == [()]:
      return cls(())
    return cls.build(current)

  @property
  def is_empty(self) -> bool:
    return not self.disjuncts

  def conjunctions(self) -> Tuple[Conjunction, ...]:
    """
    Returns the disjuncts, or a single empty conjunction when there are none,
    so that an empty set can be iterated as "no assumptions".
    """
    return self.disjuncts or ((),)

  def atoms(self) -> Conjunction:
    """Returns every distinct atom in order of appearance."""
    return _dedupe(a for conj in self.disjuncts for a in conj)

  def without(self, keys: Iterable[str]) -> "RequirementSet":
    """
    Removes the given atoms from every disjunct. If any disjunct is left
    empty the whole set is satisfied.
    """
    keys = set(keys)
    return RequirementSet.build(tuple(a for a in conj if a.key not in keys) for conj in self.disjuncts)

  def documented(self) -> "RequirementSet":
    """Drops ``invariant(self)`` markers, which never count as requirements."""
    return self.without(a.key for a in self.atoms() if a.is_marker)

  @property
  def has_marker(self) -> bool:
    return any(a.is_marker for a in self.atoms())

  def restricted_to_members(self, members: Iterable[str]) -> "RequirementSet":
    """
    Keeps the part of the set that concerns the given members of ``self``.

    A single conjunction keeps only the atoms touching the members. With
    several alternatives, any one of them may be the one that holds, so the
    set is kept whole as soon as one atom touches the members.

    Returns:
        RequirementSet: The restriction; empty if no atom touches the members.
    """
    members = set(members)
    touched = [a for a in self.atoms() if a.self_members & members]
    if not touched:
      return RequirementSet(())
    if len(self.disjuncts) == 1:
      return RequirementSet.build([touched])
    return self

  def substitute(
    self,
    names: Optional[Dict[str, str]] = None,
    self_fields: Optional[Dict[str, str]] = None,
  ) -> "RequirementSet":
    if self.is_empty:
      return self
    return RequirementSet.build(tuple(a.substitute(names, self_fields) for a in conj) for conj in self.disjuncts)

  def entailed_by(self, assumptions: "RequirementSet") -> bool:
    """
    Checks that every satisfiable alternative of `assumptions` implies
    some alternative of this set.
    """
    if self.is_empty:
      return True
    for conj in assumptions.conjunctions():
      if not satisfiable(conj):
        continue
      if first_uncovered(conj, self.disjuncts) is not None:
        return False
    return True

  def __str__(self) -> str:
    if self.is_empty:
      return "<none>"
    parts = [" and ".join(a.text for a in conj) for conj in self.disjuncts]
    if len(parts) == 1:
      return parts[0]
    return " or ".join(f"({p})" for p in parts)


EMPTY = RequirementSet(())


@dataclass(frozen=True)
class Claim:
  """
  One assertion inside a justification annotation.
  """

  text: str
  atoms: Conjunction
  reason: str = ""


@dataclass(frozen=True)
class Justification:
  """
  A parsed ``SAFETY:`` annotation attached to an operation site.
  """

  raw: str
  claims: Tuple[Claim, ...] = ()


def _split_claim(clause: str) -> Tuple[str, str]:
  lowered = clause.lower()
  idx = lowered.find(" because ")
  if idx >= 0:
    return clause[:idx].strip(), clause[idx + len(" because ") :].strip()
  # A "::" is a path separator, never the end of a predicate.
  colons = [m.start() for m in _CLAIM_COLON_RE.finditer(clause)]
  for pos in colons:
    if _try_parse(clause[:pos]) is not None:
      return clause[:pos].strip(), clause[pos + 1 :].strip()
  if _try_parse(clause) is not None:
    return clause.strip(), ""
  if colons:
    return clause[: colons[0]].strip(), clause[colons[0] + 1 :].strip()
  return clause.strip(), ""


def parse_justification(raw: Optional[str]) -> Optional[Justification]:
  """
  Parses justification text into claims.

  Clauses are separated by newlines or ``;``. Each clause is
  ``<predicate>``, ``<predicate>: <reason>`` or ``<predicate> because <reason>``.

  Args:
      raw: The annotation text, with or without the ``SAFETY:`` marker.

  Returns:
      Optional[Justification]: None if `raw` is None or blank.
  """
  if raw is None or not raw.strip():
    return None
  body = _SAFETY_MARKER_RE.sub("", raw, count=1)
  claims: List[Claim] = []
  for line in re.split(r"[\n;]", body):
    clause = _SAFETY_MARKER_RE.sub("", _BULLET_RE.sub("", line, count=1)).strip()
    if not clause:
      continue
    predicate, reason = _split_claim(clause)
    if not predicate:
      continue
    alternatives = parse_dnf(predicate)
    if len(alternatives) == 1:
      atoms = alternatives[0]
    else:
      node = _try_parse(predicate)
      if node is not None:
        atoms = (Requirement.from_node(node, _path_roots(predicate)),)
      else:
        atoms = (Requirement.from_prose(predicate),)
    claims.append(Claim(text=clause, atoms=atoms, reason=reason))
  return Justification(raw=raw, claims=tuple(claims))

