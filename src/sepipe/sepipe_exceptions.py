"""
sepipe Exception Hierarchy

Contains all exception classes raised by the spec model, the stage builder,
the pipeline compiler and the hygienic substitution engine.
"""

from typing import Optional


class SepipeError(Exception):
    """
    Base exception for all sepipe operations.

    ::: This is-in-layer Utility-Layer.
    ::: This is a exception.
    ::: This is-in-process Main-Process.
    ::: This is stateless.
    """
    pass


# =============================================================================
# Spec construction
# =============================================================================

class SpecError(SepipeError):
    """
    Raised while constructing column specs, expressions or stages.

    ::: This is-in-layer Utility-Layer.
    ::: This is a exception.
    ::: This is-in-process Main-Process.
    ::: This is stateless.
    """
    pass


class InvalidIdentifier(SpecError):
    """
    Raised when a string is not a legal identifier under the active policy.

    ::: This is-in-layer Utility-Layer.
    ::: This is a exception.
    ::: This is-in-process Main-Process.
    ::: This is stateless.
    """

    def __init__(self, value, policy: str = "", reason: str = ""):
        self.value = value
        self.policy = policy
        self.reason = reason
        msg = f"Invalid identifier {value!r}"
        if policy:
            msg += f" (policy '{policy}')"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class EmptyExpression(SpecError):
    """
    Raised when an expression source is missing or blank.

    ::: This is-in-layer Utility-Layer.
    ::: This is a exception.
    ::: This is-in-process Main-Process.
    ::: This is stateless.
    """

    def __init__(self, name: str = ""):
        self.name = name
        if name:
            super().__init__(f"Expression for '{name}' is empty")
        else:
            super().__init__("Expression is empty")


class DuplicateResultName(SpecError):
    """
    Raised when two entries of one stage produce or reference the same name.

    ::: This is-in-layer Utility-Layer.
    ::: This is a exception.
    ::: This is-in-process Main-Process.
    ::: This is stateless.
    """

    def __init__(self, name: str, stage: str = ""):
        self.name = name
        self.stage = stage
        where = f" in {stage}" if stage else ""
        super().__init__(f"Duplicate name '{name}'{where}")


# =============================================================================
# Compilation
# =============================================================================

class CompileError(SepipeError):
    """
    Base for schema validation failures found while compiling a pipeline.

    Always carries the index of the offending stage and the unresolved name.

    ::: This is-in-layer Utility-Layer.
    ::: This is a exception.
    ::: This is-in-process Main-Process.
    ::: This is stateless.
    """

    def __init__(self, stage_index: int, name: str, message: str):
        self.stage_index = stage_index
        self.name = name
        super().__init__(f"[stage {stage_index}] {message}")


class UnknownColumn(CompileError):
    """
    Raised when a stage references a column absent from the projected schema.

    ::: This is-in-layer Utility-Layer.
    ::: This is a exception.
    ::: This is-in-process Main-Process.
    ::: This is stateless.
    """

    def __init__(self, stage_index: int, name: str, available=()):
        self.available = tuple(available)
        message = f"Unknown column '{name}'"
        if self.available:
            message += f" (available: {', '.join(self.available)})"
        super().__init__(stage_index, name, message)


class SchemaMismatch(CompileError):
    """
    Raised when a stage is structurally incompatible with the projected schema.

    ::: This is-in-layer Utility-Layer.
    ::: This is a exception.
    ::: This is-in-process Main-Process.
    ::: This is stateless.
    """

    def __init__(self, stage_index: int, name: str, reason: str):
        self.reason = reason
        super().__init__(stage_index, name, f"Schema mismatch on '{name}': {reason}")


# =============================================================================
# Hygienic substitution
# =============================================================================

class SubstitutionError(SepipeError):
    """
    Base for failures of the hygienic substitution engine.

    ::: This is-in-layer Utility-Layer.
    ::: This is a exception.
    ::: This is-in-process Main-Process.
    ::: This is stateless.
    """
    pass


class UnknownPlaceholder(SubstitutionError):
    """
    Raised (in strict mode) when placeholders never occur in the block.

    ::: This is-in-layer Utility-Layer.
    ::: This is a exception.
    ::: This is-in-process Main-Process.
    ::: This is stateless.
    """

    def __init__(self, placeholders):
        self.placeholders = tuple(placeholders)
        super().__init__(
            f"Placeholder(s) not found in block: {', '.join(self.placeholders)}"
        )


class CaptureConflict(SubstitutionError):
    """
    Raised when a replacement identifier would be captured by an existing binding.

    ::: This is-in-layer Utility-Layer.
    ::: This is a exception.
    ::: This is-in-process Main-Process.
    ::: This is stateless.
    """

    def __init__(self, identifier: str, placeholder: str, policy: str):
        self.identifier = identifier
        self.placeholder = placeholder
        self.policy = policy
        super().__init__(
            f"Replacement for '{placeholder}' is '{identifier}', which is already "
            f"bound in the block (capture policy: {policy})"
        )


class MalformedBlock(SubstitutionError):
    """
    Raised when a code block cannot be tokenized.

    ::: This is-in-layer Utility-Layer.
    ::: This is a exception.
    ::: This is-in-process Main-Process.
    ::: This is stateless.
    """

    def __init__(self, message: str, line: Optional[int] = None,
                 column: Optional[int] = None):
        self.line = line
        self.column = column
        loc = ""
        if line is not None:
            loc = f" at line {line}"
            if column is not None:
                loc += f", column {column}"
        super().__init__(f"Malformed block{loc}: {message}")


# =============================================================================
# Execution
# =============================================================================

class EngineError(SepipeError):
    """
    Opaque failure reported by a TableEngine collaborator.

    The core never interprets these; they are passed to the caller unchanged.

    ::: This is-in-layer Utility-Layer.
    ::: This is a exception.
    ::: This is-in-process Main-Process.
    ::: This is stateless.
    """
    pass


__all__ = [
    "SepipeError",
    "SpecError",
    "InvalidIdentifier",
    "EmptyExpression",
    "DuplicateResultName",
    "CompileError",
    "UnknownColumn",
    "SchemaMismatch",
    "SubstitutionError",
    "UnknownPlaceholder",
    "CaptureConflict",
    "MalformedBlock",
    "EngineError",
]
