"""
Pipeline stages - the tagged variant of relational operations.

Stages are frozen dataclasses holding only validated spec-model values. They
carry no behaviour beyond describing themselves; schema projection lives in
the compiler.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Tuple

from .spec_model import ColumnName, NamedExpression, SortKey


class Stage(ABC):
    """
    Base for all pipeline stages.

    ::: This is-in-layer Domain-Specific-Language-Layer.
    ::: This is a step.
    ::: This is-in-process Main-Process.
    ::: This is stateless.
    """
    kind: ClassVar[str]

    @abstractmethod
    def arguments(self) -> Dict[str, Any]:
        """Plain-data arguments for the emitted stage descriptor."""
        pass


def _names(columns: Tuple[ColumnName, ...]):
    return [c.name for c in columns]


def _exprs(exprs: Tuple[NamedExpression, ...]):
    return [{"name": e.result_name.name, "expr": e.expression_source} for e in exprs]


@dataclass(frozen=True)
class GroupBy(Stage):
    """Set the grouping columns, in order.

    ::: This is-in-layer Domain-Specific-Language-Layer.
    ::: This is a step.
    """
    kind: ClassVar[str] = "group_by"
    columns: Tuple[ColumnName, ...]

    def arguments(self) -> Dict[str, Any]:
        return {"columns": _names(self.columns)}


@dataclass(frozen=True)
class Summarize(Stage):
    """Aggregate each group to one row.

    ::: This is-in-layer Domain-Specific-Language-Layer.
    ::: This is a step.
    """
    kind: ClassVar[str] = "summarize"
    exprs: Tuple[NamedExpression, ...]

    def arguments(self) -> Dict[str, Any]:
        return {"exprs": _exprs(self.exprs)}


@dataclass(frozen=True)
class Select(Stage):
    """Project onto the given columns, in order.

    ::: This is-in-layer Domain-Specific-Language-Layer.
    ::: This is a step.
    """
    kind: ClassVar[str] = "select"
    columns: Tuple[ColumnName, ...]

    def arguments(self) -> Dict[str, Any]:
        return {"columns": _names(self.columns)}


@dataclass(frozen=True)
class Mutate(Stage):
    """Add or replace columns computed row by row.

    ::: This is-in-layer Domain-Specific-Language-Layer.
    ::: This is a step.
    """
    kind: ClassVar[str] = "mutate"
    exprs: Tuple[NamedExpression, ...]

    def arguments(self) -> Dict[str, Any]:
        return {"exprs": _exprs(self.exprs)}


@dataclass(frozen=True)
class Filter(Stage):
    """Keep rows where the expression holds.

    ::: This is-in-layer Domain-Specific-Language-Layer.
    ::: This is a step.
    """
    kind: ClassVar[str] = "filter"
    expression_source: str

    def arguments(self) -> Dict[str, Any]:
        return {"expr": self.expression_source}


@dataclass(frozen=True)
class Arrange(Stage):
    """Sort rows by the given keys, in priority order.

    ::: This is-in-layer Domain-Specific-Language-Layer.
    ::: This is a step.
    """
    kind: ClassVar[str] = "arrange"
    keys: Tuple[SortKey, ...]

    def arguments(self) -> Dict[str, Any]:
        return {"keys": [{"column": k.column.name, "direction": k.direction.value}
                         for k in self.keys]}


@dataclass(frozen=True)
class Ungroup(Stage):
    """Drop the active grouping.

    ::: This is-in-layer Domain-Specific-Language-Layer.
    ::: This is a step.
    """
    kind: ClassVar[str] = "ungroup"

    def arguments(self) -> Dict[str, Any]:
        return {}


@dataclass(frozen=True)
class Rename(Stage):
    """Rename columns in place, keeping their position.

    ::: This is-in-layer Domain-Specific-Language-Layer.
    ::: This is a step.
    """
    kind: ClassVar[str] = "rename"
    pairs: Tuple[Tuple[ColumnName, ColumnName], ...]  # (old, new)

    def arguments(self) -> Dict[str, Any]:
        return {"columns": [{"from": old.name, "to": new.name} for old, new in self.pairs]}


STAGE_KINDS = {
    cls.kind: cls
    for cls in (GroupBy, Summarize, Select, Mutate, Filter, Arrange, Ungroup, Rename)
}
