"""
Runtime Configuration Store.

One `AnalysisConfig` is chosen per analysis run and is frozen afterwards;
the engine never reconfigures mid-run.
"""

from typing import Dict, List, Set

from pydantic import BaseModel, ConfigDict, Field, field_validator

from unsafe_ledger.enums import SoundnessCriterion, UnsafeOpKind

# Templates for the requirements implied by language-level unsafe operations.
# '{target}' is replaced with the operand expression at the operation site.
DEFAULT_PRIMITIVE_REQUIREMENTS: Dict[str, List[str]] = {
  "raw_deref:read": ["valid_for_reads({target})", "aligned({target})"],
  "raw_deref:write": ["valid_for_writes({target})", "aligned({target})"],
  UnsafeOpKind.STATIC_MUT.value: ["exclusive_access({target})"],
  UnsafeOpKind.UNION_FIELD.value: ["initialized_as({target})"],
}

# Names that may appear in requirements without being parameters or fields.
DEFAULT_AMBIENT_NAMES: Set[str] = {
  "True",
  "False",
  "None",
  "null",
  "usize",
  "isize",
  "u8",
  "u16",
  "u32",
  "u64",
  "i8",
  "i16",
  "i32",
  "i64",
  "size_of",
  "align_of",
  "len",
}


# External unsafe traits, matched by the last segment of the implemented trait path.
DEFAULT_UNSAFE_EXTERNAL_TRAITS: Set[str] = {"Send", "Sync", "GlobalAlloc", "TrustedLen"}


class AnalysisConfig(BaseModel):
  """
  Global configuration container for the soundness engine.
  """

  model_config = ConfigDict(frozen=True)

  criterion: SoundnessCriterion = Field(
    SoundnessCriterion.MODULE,
    description="Accessibility boundary at which safe-code misuse must be impossible.",
  )
  primitive_requirements: Dict[str, List[str]] = Field(
    default_factory=lambda: {k: list(v) for k, v in DEFAULT_PRIMITIVE_REQUIREMENTS.items()},
    description="Requirement templates for primitive unsafe operations, keyed by op (and access mode).",
  )
  ambient_names: Set[str] = Field(
    default_factory=lambda: set(DEFAULT_AMBIENT_NAMES),
    description="Identifiers always visible to requirements (types, constants, helpers).",
  )
  unsafe_external_traits: Set[str] = Field(
    default_factory=lambda: set(DEFAULT_UNSAFE_EXTERNAL_TRAITS),
    description="Traits defined outside the crate that are declared `unsafe trait`, by last path segment.",
  )
  report_recommended: bool = Field(True, description="If True, emit findings for recommended rules.")
  strict_requirements: bool = Field(
    False,
    description="If True, the model builder raises on the first malformed requirement.",
  )

  @field_validator("criterion", mode="before")
  @classmethod
  def validate_criterion(cls, v: object) -> object:
    """
    Accepts criterion names case-insensitively, with an optional '_level' suffix.

    Args:
        v: The raw criterion value.

    Returns:
        The normalized value ('struct', 'module' or 'crate').

    Raises:
        ValueError: If the value is not a known criterion.
    """
    if isinstance(v, SoundnessCriterion):
      return v
    if not isinstance(v, str):
      raise ValueError(f"Unknown soundness criterion: {v!r}")
    v_clean = v.lower().strip().replace("-", "_")
    if v_clean.endswith("_level"):
      v_clean = v_clean[: -len("_level")]
    elif v_clean.endswith("level"):
      v_clean = v_clean[: -len("level")]
    known = [c.value for c in SoundnessCriterion]
    if v_clean not in known:
      raise ValueError(f"Unknown soundness criterion: '{v}'. Supported criteria: {known}")
    return v_clean

  def templates_for(self, op: UnsafeOpKind, access: str = "read") -> List[str]:
    """
    Resolves the requirement templates for a primitive operation.

    Args:
        op: The primitive operation kind.
        access: 'read' or 'write' (only meaningful for raw dereferences).

    Returns:
        List of template strings; empty if the operation carries no requirement.
    """
    keyed = self.primitive_requirements.get(f"{op.value}:{access}")
    if keyed is not None:
      return keyed
    return self.primitive_requirements.get(op.value, [])
