"""
Schema - ordered column-name-to-type mapping used for validation only.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

import pyarrow as pa

from ..sepipe_exceptions import DuplicateResultName
from .spec_model import ColumnName, PolicyLike, make_column


@dataclass(frozen=True)
class Schema:
    """Immutable, ordered column -> type mapping.

    Types are opaque to the core; Arrow sources carry pa.DataType values and
    computed columns carry None.

    ::: This is-in-layer Domain-Specific-Language-Layer.
    ::: This is a value-object.
    ::: This is-in-process Main-Process.
    ::: This is stateless.
    """
    fields: Tuple[Tuple[ColumnName, Any], ...] = ()

    # -------------------------------------------------------------------------
    # Constructors
    # -------------------------------------------------------------------------

    @classmethod
    def of(cls, columns: Union["Schema", Mapping[str, Any], Iterable[Any], pa.Schema],
           policy: PolicyLike = None) -> "Schema":
        """Build a schema from a mapping, a name list, (name, type) pairs or an Arrow schema."""
        if isinstance(columns, Schema):
            return columns
        if isinstance(columns, pa.Schema):
            return cls.from_arrow(columns, policy)
        if isinstance(columns, Mapping):
            items = list(columns.items())
        else:
            items = [c if isinstance(c, tuple) else (c, None) for c in columns]

        fields = []
        seen = set()
        for name, dtype in items:
            column = make_column(name, policy)
            if column in seen:
                raise DuplicateResultName(column.name, "schema")
            seen.add(column)
            fields.append((column, dtype))
        return cls(tuple(fields))

    @classmethod
    def from_arrow(cls, schema: pa.Schema, policy: PolicyLike = None) -> "Schema":
        return cls.of([(f.name, f.type) for f in schema], policy)

    # -------------------------------------------------------------------------
    # Mapping protocol
    # -------------------------------------------------------------------------

    def __contains__(self, name: Union[str, ColumnName]) -> bool:
        return self._key(name) in self.names

    def __iter__(self) -> Iterator[ColumnName]:
        return (column for column, _ in self.fields)

    def __len__(self) -> int:
        return len(self.fields)

    @property
    def names(self) -> List[str]:
        return [column.name for column, _ in self.fields]

    def type_of(self, name: Union[str, ColumnName]) -> Optional[Any]:
        key = self._key(name)
        for column, dtype in self.fields:
            if column.name == key:
                return dtype
        raise KeyError(key)

    def to_dict(self) -> dict:
        return {column.name: (None if dtype is None else str(dtype))
                for column, dtype in self.fields}

    @staticmethod
    def _key(name: Union[str, ColumnName]) -> str:
        return name.name if isinstance(name, ColumnName) else name
