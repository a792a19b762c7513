"""
Pipeline Stage Builder

An immutable Pipeline value plus the operations that append stages to it.
Every operation returns a new Pipeline; intermediate pipelines stay valid
and can be extended independently.

Column references are always the literal strings supplied. The builder
checks what it can without a schema (identifier syntax, duplicate names,
blank expressions); schema resolution happens in the compiler so that the
offending stage index can be reported.

Example:
    by = ["region", "year"]
    pipeline = (
        Pipeline.from_schema({"region": None, "year": None, "sales": None})
        .group_by(by)
        .summarize({"total": "sum(sales)"})
        .arrange([("total", "desc")])
    )
    plan = pipeline.compile()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Optional, Tuple

from ..models import PipelineConfig, resolve_config
from ..sepipe_exceptions import DuplicateResultName, EmptyExpression, InvalidIdentifier
from .schema import Schema
from .spec_model import (
    ColumnName,
    ColumnsLike,
    Direction,
    ExpressionsLike,
    as_columns,
    as_named_expressions,
    as_sort_keys,
    make_column,
    make_sort_key,
)
from .stages import Arrange, Filter, GroupBy, Mutate, Rename, Select, Stage, Summarize, Ungroup

if TYPE_CHECKING:
    from .compiler import Plan
    from .engine import TableEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Pipeline:
    """
    An ordered, immutable sequence of stages over a declared source schema.

    ::: This is-in-layer Domain-Specific-Language-Layer.
    ::: This is a pipeline.
    ::: This is-in-process Main-Process.
    ::: This is stateless.
    """
    source: Schema
    stages: Tuple[Stage, ...] = ()
    table: Optional[str] = None
    config: PipelineConfig = field(default_factory=PipelineConfig)

    # -------------------------------------------------------------------------
    # Constructors
    # -------------------------------------------------------------------------

    @classmethod
    def from_schema(cls, schema: Any, table: Optional[str] = None,
                    config: Optional[PipelineConfig] = None) -> "Pipeline":
        """Start a pipeline from a declared schema (mapping, names, or Arrow schema)."""
        config = resolve_config(config)
        return cls(
            source=Schema.of(schema, config.identifier_policy),
            table=table,
            config=config,
        )

    @classmethod
    def from_engine(cls, engine: "TableEngine", table: str,
                    config: Optional[PipelineConfig] = None) -> "Pipeline":
        """Start a pipeline from the schema the engine reports for table."""
        return cls.from_schema(engine.get_schema(table), table=table, config=config)

    def _add_stage(self, stage: Stage) -> "Pipeline":
        """Return a new pipeline with stage appended."""
        logger.debug(f"Stage {len(self.stages)}: {stage.kind} {stage.arguments()}")
        return replace(self, stages=self.stages + (stage,))

    @property
    def _policy(self) -> str:
        return self.config.identifier_policy

    # -------------------------------------------------------------------------
    # Stage operations (fluent API)
    # -------------------------------------------------------------------------

    def group_by(self, columns: ColumnsLike) -> "Pipeline":
        """Group by columns, in order."""
        return self._add_stage(GroupBy(as_columns(columns, self._policy, "group_by")))

    def summarize(self, exprs: ExpressionsLike) -> "Pipeline":
        """Aggregate to one row per group: {result_name: expression}."""
        return self._add_stage(Summarize(as_named_expressions(exprs, self._policy, "summarize")))

    def select(self, columns: ColumnsLike) -> "Pipeline":
        """Keep only columns, in the given order."""
        return self._add_stage(Select(as_columns(columns, self._policy, "select")))

    def mutate(self, exprs: ExpressionsLike) -> "Pipeline":
        """Add or replace columns: {result_name: expression}."""
        return self._add_stage(Mutate(as_named_expressions(exprs, self._policy, "mutate")))

    def filter(self, expr: str) -> "Pipeline":
        """Keep rows where expr holds."""
        if not isinstance(expr, str) or not expr.strip():
            raise EmptyExpression("filter")
        return self._add_stage(Filter(expr))

    def arrange(self, keys: Iterable[Any]) -> "Pipeline":
        """Sort by keys: SortKey values, (column, "asc"|"desc") pairs or columns."""
        return self._add_stage(Arrange(as_sort_keys(keys, self._policy)))

    def ungroup(self) -> "Pipeline":
        """Drop the active grouping."""
        return self._add_stage(Ungroup())

    def rename(self, mapping: Mapping[str, str]) -> "Pipeline":
        """Rename columns: {old_name: new_name}."""
        if isinstance(mapping, (str, ColumnName)) or not isinstance(mapping, Mapping):
            raise InvalidIdentifier(mapping, reason="rename expects a mapping of old -> new")
        pairs = tuple(
            (make_column(old, self._policy), make_column(new, self._policy))
            for old, new in mapping.items()
        )
        if not pairs:
            raise InvalidIdentifier(dict(mapping), reason="rename needs at least one column")
        targets = set()
        for _, new in pairs:
            if new in targets:
                raise DuplicateResultName(new.name, "rename")
            targets.add(new)
        return self._add_stage(Rename(pairs))

    # -------------------------------------------------------------------------
    # Compilation and execution
    # -------------------------------------------------------------------------

    def compile(self) -> "Plan":
        """Validate against the source schema and emit a plan."""
        from .compiler import PipelineCompiler
        return PipelineCompiler(self.config).compile(self)

    def execute(self, engine: "TableEngine", table: Optional[str] = None) -> Any:
        """Compile and hand the plan to engine."""
        from .engine import execute_pipeline
        return execute_pipeline(self, engine, table)

    def __len__(self) -> int:
        return len(self.stages)


# =============================================================================
# Builder Functions
# =============================================================================

def from_schema(schema: Any, table: Optional[str] = None,
                config: Optional[PipelineConfig] = None) -> Pipeline:
    """Start a pipeline from a declared schema."""
    return Pipeline.from_schema(schema, table, config)


def group_by(pipeline: Pipeline, columns: ColumnsLike) -> Pipeline:
    return pipeline.group_by(columns)


def summarize(pipeline: Pipeline, exprs: ExpressionsLike) -> Pipeline:
    return pipeline.summarize(exprs)


def select(pipeline: Pipeline, columns: ColumnsLike) -> Pipeline:
    return pipeline.select(columns)


def mutate(pipeline: Pipeline, exprs: ExpressionsLike) -> Pipeline:
    return pipeline.mutate(exprs)


def filter(pipeline: Pipeline, expr: str) -> Pipeline:
    return pipeline.filter(expr)


def arrange(pipeline: Pipeline, keys: Iterable[Any]) -> Pipeline:
    return pipeline.arrange(keys)


def ungroup(pipeline: Pipeline) -> Pipeline:
    return pipeline.ungroup()


def rename(pipeline: Pipeline, mapping: Mapping[str, str]) -> Pipeline:
    return pipeline.rename(mapping)


def arrange_by_strings(pipeline: Pipeline, specs: Iterable[str]) -> Pipeline:
    """Sort by column strings; a leading "-" means descending."""
    if isinstance(specs, str):
        raise InvalidIdentifier(specs, reason="expected a sequence of sort specs, got a single value")
    keys = []
    for spec in specs:
        if isinstance(spec, str) and spec.startswith("-"):
            keys.append(make_sort_key(spec[1:], Direction.DESC, pipeline.config.identifier_policy))
        else:
            keys.append(make_sort_key(spec, Direction.ASC, pipeline.config.identifier_policy))
    return pipeline.arrange(keys)
