"""
sepipe DSL - standard-evaluation pipeline builder

Column names and expressions are passed as values, never picked up from the
caller's scope, and composed into an immutable sequence of relational stages
that an external TableEngine executes.

Components:
- spec_model: ColumnName, NamedExpression, SortKey and identifier policies
- hygiene: simultaneous, capture-avoiding substitution over code blocks
- pipeline / stages: the immutable Pipeline and its stage operations
- compiler: schema validation and Plan emission
- engine: the TableEngine contract and execute_pipeline

Example:
    def summarize_by(schema, by, measure):
        return (
            Pipeline.from_schema(schema)
            .group_by(by)
            .summarize({"total": substitute("sum(v)", {"v": measure}).text})
        )
"""

# Value types and identifier policies
from .spec_model import (
    ColumnName, NamedExpression, SortKey, Direction,
    IdentifierPolicy, IDENTIFIER_POLICIES,
    get_identifier_policy, register_identifier_policy,
    make_column, make_named_expression, make_sort_key,
)

# Tokenizer
from .tokenizer import Token, TokenKind, TokenStream, Tokenizer, tokenize

# Hygienic substitution
from .hygiene import (
    CodeTemplate, HygienicSubstituter, SubstitutionResult,
    free_identifiers, substitute,
)

# Stages and pipeline builder
from .schema import Schema
from .stages import (
    Stage, GroupBy, Summarize, Select, Mutate, Filter, Arrange, Ungroup, Rename,
    STAGE_KINDS,
)
from .pipeline import (
    Pipeline, from_schema, group_by, summarize, select, mutate, filter,
    arrange, ungroup, rename, arrange_by_strings,
)

# Compiler and engine contract
from .compiler import Plan, PipelineCompiler, StageDescriptor, compile_pipeline
from .engine import TableEngine, execute_pipeline

__all__ = [
    # Spec model
    "ColumnName",
    "NamedExpression",
    "SortKey",
    "Direction",
    "IdentifierPolicy",
    "IDENTIFIER_POLICIES",
    "get_identifier_policy",
    "register_identifier_policy",
    "make_column",
    "make_named_expression",
    "make_sort_key",
    # Tokenizer
    "Token",
    "TokenKind",
    "TokenStream",
    "Tokenizer",
    "tokenize",
    # Hygiene
    "CodeTemplate",
    "HygienicSubstituter",
    "SubstitutionResult",
    "free_identifiers",
    "substitute",
    # Pipeline
    "Schema",
    "Stage",
    "GroupBy",
    "Summarize",
    "Select",
    "Mutate",
    "Filter",
    "Arrange",
    "Ungroup",
    "Rename",
    "STAGE_KINDS",
    "Pipeline",
    "from_schema",
    "group_by",
    "summarize",
    "select",
    "mutate",
    "filter",
    "arrange",
    "ungroup",
    "rename",
    "arrange_by_strings",
    # Compiler / engine
    "Plan",
    "PipelineCompiler",
    "StageDescriptor",
    "compile_pipeline",
    "TableEngine",
    "execute_pipeline",
]
