"""
Enumerations for unsafe-ledger.

This module defines the standard enumerations used across the codebase for
item categorization, visibility, unsafe operations and analysis outcomes.
"""

from enum import Enum


class ItemKind(str, Enum):
  """
  Categorization of entities in the Item Model.
  """

  FUNCTION = "function"
  METHOD = "method"  # Has a receiver
  ASSOCIATED_FUNCTION = "associated_function"  # Owned by a struct, no receiver
  TRAIT = "trait"
  TRAIT_METHOD = "trait_method"
  STRUCT = "struct"
  ENUM = "enum"
  TRAIT_IMPL = "trait_impl"


class VisibilityKind(str, Enum):
  """
  Declared visibility markers, ordered from narrowest to broadest.
  """

  PRIVATE = "private"
  PUB_SUPER = "pub_super"
  PUB_IN_PATH = "pub_in_path"
  PUB_CRATE = "pub_crate"
  PUB = "pub"


class SoundnessCriterion(str, Enum):
  """
  Accessibility boundary at which safe-code misuse must be impossible.
  """

  STRUCT = "struct"
  MODULE = "module"
  CRATE = "crate"


class UnsafeOpKind(str, Enum):
  """
  Operations found in item bodies that may carry safety requirements.
  """

  CALL = "call"
  RAW_DEREF = "raw_deref"
  STATIC_MUT = "static_mut"
  UNION_FIELD = "union_field"
  STRUCT_LITERAL = "struct_literal"
  FIELD_WRITE = "field_write"

  @property
  def is_primitive(self) -> bool:
    """True for language-level unsafe operations (no callee item)."""
    return self in (UnsafeOpKind.RAW_DEREF, UnsafeOpKind.STATIC_MUT, UnsafeOpKind.UNION_FIELD)

  @property
  def touches_internals(self) -> bool:
    """True for operations that reach struct fields directly."""
    return self in (UnsafeOpKind.STRUCT_LITERAL, UnsafeOpKind.FIELD_WRITE)


class TerminalState(str, Enum):
  """
  Per-item classification outcome. Each item receives exactly one per run.
  """

  SOUND_SAFE = "sound_safe"
  SOUND_UNSAFE = "sound_unsafe"
  CLASSIFICATION_VIOLATION = "classification_violation"
  BOUNDARY_VIOLATION = "boundary_violation"
  MALFORMED_REQUIREMENT = "malformed_requirement"
  CONTRACT_STRENGTHENING_VIOLATION = "contract_strengthening_violation"
  CYCLIC_OBLIGATION = "cyclic_obligation"  # Run-level only

  @property
  def is_sound(self) -> bool:
    return self in (TerminalState.SOUND_SAFE, TerminalState.SOUND_UNSAFE)


# Higher index wins when several violations apply to one item.
STATE_PRECEDENCE = [
  TerminalState.SOUND_SAFE,
  TerminalState.SOUND_UNSAFE,
  TerminalState.CLASSIFICATION_VIOLATION,
  TerminalState.BOUNDARY_VIOLATION,
  TerminalState.CONTRACT_STRENGTHENING_VIOLATION,
  TerminalState.MALFORMED_REQUIREMENT,
]


class Severity(str, Enum):
  """
  Finding severity. Recommended-rule findings never change a terminal state.
  """

  VIOLATION = "violation"
  RECOMMENDED = "recommended"
  FATAL = "fatal"


class RuleId(str, Enum):
  """
  Identifiers of the safety and documentation rules checked by the engine.
  """

  # Functions
  FUNCTION_SAFETY_1 = "function-safety-1"  # Requirements present, declared safe
  FUNCTION_SAFETY_2 = "function-safety-2"  # No requirements, declared unsafe
  FUNCTION_COMMENT_1 = "function-comment-1"  # Propagated requirement not documented
  FUNCTION_COMMENT_2 = "function-comment-2"  # Requirement references non-visible identifier
  FUNCTION_COMMENT_3 = "function-comment-3"  # Obligation over local state left unjustified

  # Structs
  STRUCT_SAFETY_1 = "struct-safety-1"  # Constructor does not establish invariant
  STRUCT_SAFETY_2 = "struct-safety-2"  # Method can break invariant without declaring it
  STRUCT_COMMENT_1 = "struct-comment-1"  # Invariant references non-field identifier
  STRUCT_COMMENT_2 = "struct-comment-2"  # Reliance on invariant not documented
  STRUCT_BOUNDARY_1 = "struct-boundary-1"  # Internals reached from outside boundary
  STRUCT_BOUNDARY_2 = "struct-boundary-2"  # Invariant fields nameable outside boundary

  # Traits
  TRAIT_SAFETY_1 = "trait-safety-1"  # Unsafe trait without documented invariant
  TRAIT_SAFETY_2 = "trait-safety-2"  # Safe trait documenting an invariant
  TRAIT_IMPL_1 = "trait-impl-1"  # Impl unsafety differs from trait unsafety
  TRAIT_CONTRACT_1 = "trait-contract-1"  # Implementation strengthens contract

  # Recommended
  RECOMMENDED_SAFETY_COMMENT = "recommended-safety-comment"
  RECOMMENDED_JUSTIFICATION_REASON = "recommended-justification-reason"
  RECOMMENDED_UNMATCHED_CLAIM = "recommended-unmatched-claim"
  RECOMMENDED_IMPL_JUSTIFICATION = "recommended-impl-justification"

  # Run level
  CYCLIC_OBLIGATION = "cyclic-obligation"
