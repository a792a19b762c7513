"""
Pipeline Compiler/Emitter

Walks a pipeline's stages once, keeping a running projected schema and the
active grouping, and validates every column reference against it. The first
failure raises (UnknownColumn / SchemaMismatch with the stage index); no
partial plan is ever returned.

Expression fragments are checked shallowly: the shared tokenizer finds the
identifiers they mention, and every identifier that is not a reserved word,
an attribute name, a function call head or a keyword argument must name a
column in scope.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..models import PipelineConfig, resolve_config
from ..sepipe_exceptions import MalformedBlock, SchemaMismatch, UnknownColumn
from .pipeline import Pipeline
from .schema import Schema
from .spec_model import ColumnName, IdentifierPolicy, get_identifier_policy
from .stages import Arrange, Filter, GroupBy, Mutate, Rename, Select, Stage, Summarize
from .tokenizer import Tokenizer

logger = logging.getLogger(__name__)


# ============================================================
# PLAN
# ============================================================

@dataclass(frozen=True)
class StageDescriptor:
    """One emitted stage: op tag, plain-data arguments and referenced columns.

    ::: This is-in-layer Domain-Specific-Language-Layer.
    ::: This is a value-object.
    """
    index: int
    op: str
    args: Dict[str, Any]
    inputs: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "op": self.op,
            "args": self.args,
            "inputs": list(self.inputs),
        }


@dataclass(frozen=True)
class Plan:
    """Engine-agnostic, validated description of a pipeline.

    ::: This is-in-layer Domain-Specific-Language-Layer.
    ::: This is a value-object.
    ::: This is-in-process Main-Process.
    ::: This is stateless.
    """
    table: Optional[str]
    source: Schema
    stages: Tuple[StageDescriptor, ...]
    schema: Schema
    groups: Tuple[str, ...] = ()

    @property
    def columns(self) -> List[str]:
        """Final projected column names, in order."""
        return self.schema.names

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table": self.table,
            "source": self.source.to_dict(),
            "stages": [s.to_dict() for s in self.stages],
            "schema": self.schema.to_dict(),
            "groups": list(self.groups),
        }

    def to_json(self, indent: Optional[int] = None) -> str:
        return json.dumps(self.to_dict(), indent=indent)


# ============================================================
# PROJECTION STATE
# ============================================================

@dataclass
class _Projection:
    """Running schema while walking the stages."""
    columns: Dict[str, Tuple[ColumnName, Any]] = field(default_factory=dict)
    groups: Tuple[ColumnName, ...] = ()

    @classmethod
    def start(cls, source: Schema) -> "_Projection":
        return cls({c.name: (c, t) for c, t in source.fields})

    def require(self, index: int, name: str) -> None:
        if name not in self.columns:
            raise UnknownColumn(index, name, list(self.columns))

    def schema(self) -> Schema:
        return Schema(tuple(self.columns.values()))


# ============================================================
# COMPILER
# ============================================================

class PipelineCompiler:
    """
    Validates pipelines and emits Plans.

    Usage:
        plan = PipelineCompiler(config).compile(pipeline)
        engine.execute(plan, plan.table)

    ::: This is-in-layer Domain-Specific-Language-Layer.
    ::: This is a compiler.
    ::: This is-in-process Main-Process.
    ::: This is stateless.
    """

    def __init__(self, config: Optional[PipelineConfig] = None):
        self.config = resolve_config(config)
        self.policy: IdentifierPolicy = get_identifier_policy(self.config.identifier_policy)
        self.tokenizer = Tokenizer()

    def compile(self, pipeline: Pipeline) -> Plan:
        """
        Compile a pipeline into a Plan.

        Raises:
            UnknownColumn: a stage references a column not in scope
            SchemaMismatch: a stage conflicts with the projected schema
        """
        state = _Projection.start(pipeline.source)
        descriptors = []

        for index, stage in enumerate(pipeline.stages):
            handler = getattr(self, f"_compile_{stage.kind}")
            inputs = handler(index, stage, state)
            descriptors.append(StageDescriptor(
                index=index,
                op=stage.kind,
                args=stage.arguments(),
                inputs=tuple(dict.fromkeys(inputs)),
            ))

        plan = Plan(
            table=pipeline.table,
            source=pipeline.source,
            stages=tuple(descriptors),
            schema=state.schema(),
            groups=tuple(g.name for g in state.groups),
        )
        logger.debug(f"Compiled {len(descriptors)} stage(s); columns: {plan.columns}")
        return plan

    # --------------------------------------------------------
    # Expression references
    # --------------------------------------------------------

    def referenced_columns(self, index: int, expr: str, owner: str = "") -> List[str]:
        """Identifiers in expr that must resolve to columns, in order."""
        try:
            stream = self.tokenizer.tokenize(expr)
        except MalformedBlock as e:
            raise SchemaMismatch(index, owner or expr, f"expression cannot be tokenized: {e}") from e

        names = []
        for i, token in enumerate(stream.tokens):
            if not token.is_identifier:
                continue
            if self.policy.is_reserved(token.value):
                continue
            if stream.is_attribute(i) or stream.is_call_head(i):
                continue
            if stream.is_keyword_argument(i):
                continue
            names.append(token.value)
        return names

    def _check_exprs(self, index: int, exprs, state: _Projection,
                     extra: Tuple[str, ...] = ()) -> List[str]:
        inputs = []
        for expr in exprs:
            for name in self.referenced_columns(index, expr.expression_source, expr.result_name.name):
                if name not in extra:
                    state.require(index, name)
                inputs.append(name)
        return inputs

    def _check_not_group(self, index: int, name: str, state: _Projection, what: str) -> None:
        if any(g.name == name for g in state.groups):
            raise SchemaMismatch(index, name, f"{what} would overwrite an active grouping column")

    # --------------------------------------------------------
    # Stage handlers
    # --------------------------------------------------------

    def _compile_group_by(self, index: int, stage: GroupBy, state: _Projection) -> List[str]:
        for column in stage.columns:
            state.require(index, column.name)
        state.groups = stage.columns
        return [c.name for c in stage.columns]

    def _compile_summarize(self, index: int, stage: Summarize, state: _Projection) -> List[str]:
        inputs = self._check_exprs(index, stage.exprs, state)
        for expr in stage.exprs:
            self._check_not_group(index, expr.result_name.name, state, "summarize result")

        columns = {g.name: state.columns[g.name] for g in state.groups}
        for expr in stage.exprs:
            columns[expr.result_name.name] = (expr.result_name, None)
        state.columns = columns
        state.groups = ()
        return inputs

    def _compile_select(self, index: int, stage: Select, state: _Projection) -> List[str]:
        for column in stage.columns:
            state.require(index, column.name)
        selected = {c.name for c in stage.columns}
        for group in state.groups:
            if group.name not in selected:
                raise SchemaMismatch(index, group.name, "select drops an active grouping column")
        state.columns = {c.name: state.columns[c.name] for c in stage.columns}
        return [c.name for c in stage.columns]

    def _compile_mutate(self, index: int, stage: Mutate, state: _Projection) -> List[str]:
        inputs = []
        produced: Tuple[str, ...] = ()
        for expr in stage.exprs:
            inputs.extend(self._check_exprs(index, [expr], state, produced))
            name = expr.result_name.name
            self._check_not_group(index, name, state, "mutate result")
            state.columns[name] = (expr.result_name, None)
            produced += (name,)
        return inputs

    def _compile_filter(self, index: int, stage: Filter, state: _Projection) -> List[str]:
        names = self.referenced_columns(index, stage.expression_source, "filter")
        for name in names:
            state.require(index, name)
        return names

    def _compile_arrange(self, index: int, stage: Arrange, state: _Projection) -> List[str]:
        for key in stage.keys:
            state.require(index, key.column.name)
        return [k.column.name for k in stage.keys]

    def _compile_ungroup(self, index: int, stage: Stage, state: _Projection) -> List[str]:
        state.groups = ()
        return []

    def _compile_rename(self, index: int, stage: Rename, state: _Projection) -> List[str]:
        olds = {old.name for old, _ in stage.pairs}
        for old, _ in stage.pairs:
            state.require(index, old.name)
        remaining = set(state.columns) - olds
        for _, new in stage.pairs:
            if new.name in remaining:
                raise SchemaMismatch(index, new.name, "rename target already exists")

        renames = {old.name: new for old, new in stage.pairs}
        columns = {}
        for name, (column, dtype) in state.columns.items():
            target = renames.get(name, column)
            columns[target.name] = (target, dtype)
        state.columns = columns
        state.groups = tuple(renames.get(g.name, g) for g in state.groups)
        return [old.name for old, _ in stage.pairs]


def compile_pipeline(pipeline: Pipeline, config: Optional[PipelineConfig] = None) -> Plan:
    """Compile pipeline with its own config unless one is given."""
    return PipelineCompiler(config or pipeline.config).compile(pipeline)
