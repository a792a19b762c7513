"""
Configuration models for sepipe

Pydantic models for the explicit configuration value threaded through the
stage builder, the compiler and the hygienic substitution engine.
"""

import os
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# ============================================================================
# Enums
# ============================================================================

class CapturePolicy(str, Enum):
    """What the substitution engine does when a replacement would be captured"""
    REJECT = "reject"    # Raise CaptureConflict (default)
    RENAME = "rename"    # Rename the existing binding to a fresh identifier


# ============================================================================
# Configuration
# ============================================================================

class PipelineConfig(BaseModel):
    """Explicit configuration for building, compiling and rewriting.

    There is no process-wide default that code can mutate: callers either
    pass a config or get a fresh default instance.
    """
    model_config = ConfigDict(frozen=True)

    identifier_policy: str = Field(
        "python", description="Name of a registered identifier policy"
    )
    capture_policy: CapturePolicy = CapturePolicy.REJECT
    strict_placeholders: bool = Field(
        False, description="Raise UnknownPlaceholder instead of reporting it"
    )
    fresh_name_template: str = Field(
        "{name}_{n}", description="Template for identifiers generated on rename"
    )

    @field_validator("identifier_policy")
    @classmethod
    def _known_policy(cls, value: str) -> str:
        from .dsl.spec_model import IDENTIFIER_POLICIES
        if value not in IDENTIFIER_POLICIES:
            raise ValueError(
                f"Unknown identifier policy '{value}' "
                f"(known: {', '.join(sorted(IDENTIFIER_POLICIES))})"
            )
        return value

    @field_validator("fresh_name_template")
    @classmethod
    def _template_fields(cls, value: str) -> str:
        if "{name}" not in value or "{n}" not in value:
            raise ValueError("fresh_name_template must contain {name} and {n}")
        return value

    @model_validator(mode="after")
    def _template_yields_identifiers(self) -> "PipelineConfig":
        from .dsl.spec_model import get_identifier_policy
        try:
            sample = self.fresh_name_template.format(name="a", n=1)
        except (KeyError, IndexError, AttributeError, TypeError, ValueError) as e:
            raise ValueError(
                f"fresh_name_template {self.fresh_name_template!r} cannot be formatted "
                f"with only {{name}} and {{n}}: {e!r}"
            ) from e
        reason = get_identifier_policy(self.identifier_policy).check(sample)
        if reason is not None:
            raise ValueError(
                f"fresh_name_template {self.fresh_name_template!r} yields {sample!r}, "
                f"not a '{self.identifier_policy}' identifier: {reason}"
            )
        return self

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        """Build a config from SEPIPE_* environment variables."""
        values = {}
        policy = os.getenv("SEPIPE_IDENTIFIER_POLICY")
        if policy:
            values["identifier_policy"] = policy
        capture = os.getenv("SEPIPE_CAPTURE_POLICY")
        if capture:
            values["capture_policy"] = capture.lower()
        strict = os.getenv("SEPIPE_STRICT_PLACEHOLDERS")
        if strict:
            values["strict_placeholders"] = strict.lower() in ("true", "1", "yes")
        return cls(**values)


def resolve_config(config=None) -> PipelineConfig:
    """Return the given config, or a default one."""
    if config is None:
        return PipelineConfig()
    return config
