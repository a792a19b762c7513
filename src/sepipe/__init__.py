"""
sepipe - standard-evaluation pipeline builder with hygienic substitution

Builds deterministic, name-collision-safe relational pipelines (group,
summarize, select, mutate, filter, arrange) from column names and
expressions passed as plain strings, and emits validated plans for an
external table engine.
"""

__version__ = "0.1.0"

from .models import CapturePolicy, PipelineConfig
from .sepipe_exceptions import (
    SepipeError,
    SpecError,
    InvalidIdentifier,
    EmptyExpression,
    DuplicateResultName,
    CompileError,
    UnknownColumn,
    SchemaMismatch,
    SubstitutionError,
    UnknownPlaceholder,
    CaptureConflict,
    MalformedBlock,
    EngineError,
)
from .dsl import (
    ColumnName,
    NamedExpression,
    SortKey,
    Direction,
    Pipeline,
    Plan,
    Schema,
    TableEngine,
    HygienicSubstituter,
    SubstitutionResult,
    CodeTemplate,
    compile_pipeline,
    execute_pipeline,
    free_identifiers,
    substitute,
)

__all__ = [
    "CapturePolicy",
    "PipelineConfig",
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
    "ColumnName",
    "NamedExpression",
    "SortKey",
    "Direction",
    "Pipeline",
    "Plan",
    "Schema",
    "TableEngine",
    "HygienicSubstituter",
    "SubstitutionResult",
    "CodeTemplate",
    "compile_pipeline",
    "execute_pipeline",
    "free_identifiers",
    "substitute",
]
