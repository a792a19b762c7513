"""
Spec Model - column references and named expressions as plain data.

Nothing in this module looks at the caller's variables: a column is exactly
the string it was built from, and an expression is an opaque fragment of
the engine's expression language.

Identifier rules are table-driven. Each IdentifierPolicy is a row in
IDENTIFIER_POLICIES; callers select one by name through PipelineConfig.
"""

from __future__ import annotations

import keyword
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple, Union

from ..sepipe_exceptions import DuplicateResultName, EmptyExpression, InvalidIdentifier


# =============================================================================
# Identifier policies
# =============================================================================

@dataclass(frozen=True)
class IdentifierPolicy:
    """Rules deciding whether a string is a legal column identifier.

    ::: This is-in-layer Domain-Specific-Language-Layer.
    ::: This is a value-object.
    ::: This is-in-process Main-Process.
    ::: This is stateless.
    """
    name: str
    pattern: str
    reserved_words: FrozenSet[str] = field(default_factory=frozenset)
    case_sensitive: bool = True

    def is_reserved(self, word: str) -> bool:
        if self.case_sensitive:
            return word in self.reserved_words
        return word.lower() in self.reserved_words

    def check(self, value: Any) -> Optional[str]:
        """Return the reason value is not a legal identifier, or None."""
        if not isinstance(value, str):
            return f"expected str, got {type(value).__name__}"
        if not value:
            return "empty string"
        if re.fullmatch(self.pattern, value) is None:
            return f"does not match {self.pattern}"
        if self.is_reserved(value):
            return "reserved word"
        return None


PYTHON_RESERVED_WORDS = frozenset(keyword.kwlist)

SQL_RESERVED_WORDS = frozenset({
    "all", "and", "as", "asc", "between", "by", "case", "cast", "desc",
    "distinct", "else", "end", "exists", "false", "from", "full", "group",
    "having", "in", "inner", "is", "join", "left", "like", "limit", "not",
    "null", "on", "or", "order", "outer", "right", "select", "then", "true",
    "union", "when", "where", "with",
})

IDENTIFIER_POLICIES: Dict[str, IdentifierPolicy] = {
    "python": IdentifierPolicy(
        name="python",
        pattern=r"[A-Za-z_][A-Za-z0-9_]*",
        reserved_words=PYTHON_RESERVED_WORDS,
    ),
    "sql": IdentifierPolicy(
        name="sql",
        pattern=r"[A-Za-z_][A-Za-z0-9_]*",
        reserved_words=SQL_RESERVED_WORDS,
        case_sensitive=False,
    ),
}

DEFAULT_POLICY = "python"


def register_identifier_policy(policy: IdentifierPolicy) -> IdentifierPolicy:
    """Add a policy to the process-wide registry so configs can refer to it by name.

    Registration is append-only: a name that is already registered, built-in or
    not, is never replaced and raises ValueError. Callers that need a policy
    for one call only can pass the IdentifierPolicy object itself wherever a
    policy is accepted; that path never touches the registry.
    """
    if policy.name in IDENTIFIER_POLICIES:
        raise ValueError(f"Identifier policy '{policy.name}' already registered")
    IDENTIFIER_POLICIES[policy.name] = policy
    return policy


def get_identifier_policy(policy: Union[IdentifierPolicy, str, None] = None) -> IdentifierPolicy:
    """Resolve a policy object, a registered policy name, or None (default)."""
    if isinstance(policy, IdentifierPolicy):
        return policy
    name = policy or DEFAULT_POLICY
    try:
        return IDENTIFIER_POLICIES[name]
    except KeyError:
        raise ValueError(f"Unknown identifier policy '{name}'") from None


PolicyLike = Union[IdentifierPolicy, str, None]


# =============================================================================
# Value types
# =============================================================================

@dataclass(frozen=True, order=True)
class ColumnName:
    """A column referenced by its literal name.

    Equality and ordering are those of the underlying string.

    ::: This is-in-layer Domain-Specific-Language-Layer.
    ::: This is a value-object.
    ::: This is-in-process Main-Process.
    ::: This is stateless.
    """
    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class NamedExpression:
    """An engine expression fragment and the column it produces.

    ::: This is-in-layer Domain-Specific-Language-Layer.
    ::: This is a value-object.
    ::: This is-in-process Main-Process.
    ::: This is stateless.
    """
    result_name: ColumnName
    expression_source: str

    def __str__(self) -> str:
        return f"{self.result_name} = {self.expression_source}"


class Direction(Enum):
    """Sort direction for arrange."""
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class SortKey:
    """A column and the direction to sort it in.

    ::: This is-in-layer Domain-Specific-Language-Layer.
    ::: This is a value-object.
    """
    column: ColumnName
    direction: Direction = Direction.ASC


# =============================================================================
# Constructors
# =============================================================================

def make_column(s: Union[str, ColumnName], policy: PolicyLike = None) -> ColumnName:
    """Validate s as a column identifier and wrap it."""
    if isinstance(s, ColumnName):
        s = s.name
    rules = get_identifier_policy(policy)
    reason = rules.check(s)
    if reason is not None:
        raise InvalidIdentifier(s, rules.name, reason)
    return ColumnName(s)


def make_named_expression(name: Union[str, ColumnName], expr: str,
                          policy: PolicyLike = None) -> NamedExpression:
    """Build a NamedExpression; expr is kept verbatim and not inspected."""
    column = make_column(name, policy)
    if not isinstance(expr, str) or not expr.strip():
        raise EmptyExpression(column.name)
    return NamedExpression(column, expr)


def make_sort_key(column: Union[str, ColumnName],
                  direction: Union[Direction, str] = Direction.ASC,
                  policy: PolicyLike = None) -> SortKey:
    if isinstance(direction, str):
        try:
            direction = Direction(direction.lower())
        except ValueError:
            raise InvalidIdentifier(direction, reason="sort direction must be 'asc' or 'desc'") from None
    elif not isinstance(direction, Direction):
        raise InvalidIdentifier(direction, reason="sort direction must be 'asc' or 'desc'")
    return SortKey(make_column(column, policy), direction)


# =============================================================================
# Sequence coercion (used by the stage builder)
# =============================================================================

ColumnsLike = Iterable[Union[str, ColumnName]]
ExpressionsLike = Union[
    Mapping[str, str],
    Iterable[Union[NamedExpression, Tuple[str, str]]],
]


def _reject_bare_string(value: Any, what: str) -> None:
    # str is iterable; a single name is never a sequence of names.
    if isinstance(value, (str, ColumnName)):
        raise InvalidIdentifier(value, reason=f"expected a sequence of {what}, got a single value")


def as_columns(columns: ColumnsLike, policy: PolicyLike = None,
               stage: str = "", allow_empty: bool = False) -> Tuple[ColumnName, ...]:
    """Validate an ordered sequence of column names; repeats are rejected."""
    _reject_bare_string(columns, "column names")
    result = tuple(make_column(c, policy) for c in columns)
    if not result and not allow_empty:
        raise InvalidIdentifier(list(columns), reason=f"{stage or 'stage'} needs at least one column")
    _check_unique((c.name for c in result), stage)
    return result


def as_named_expressions(exprs: ExpressionsLike, policy: PolicyLike = None,
                         stage: str = "") -> Tuple[NamedExpression, ...]:
    """Validate named expressions given as a mapping, pairs or NamedExpression values."""
    _reject_bare_string(exprs, "named expressions")
    if isinstance(exprs, Mapping):
        items = list(exprs.items())
    else:
        items = list(exprs)

    result = []
    for item in items:
        if isinstance(item, NamedExpression):
            result.append(make_named_expression(item.result_name, item.expression_source, policy))
        elif isinstance(item, tuple) and len(item) == 2:
            result.append(make_named_expression(item[0], item[1], policy))
        elif isinstance(item, Mapping) and len(item) == 1:
            (name, expr), = item.items()
            result.append(make_named_expression(name, expr, policy))
        else:
            raise InvalidIdentifier(item, reason="expected (name, expression) pair")

    if not result:
        raise EmptyExpression(stage)
    _check_unique((e.result_name.name for e in result), stage)
    return tuple(result)


def as_sort_keys(keys: Iterable[Any], policy: PolicyLike = None) -> Tuple[SortKey, ...]:
    """Validate sort keys given as SortKey, (column, direction) pairs or plain columns."""
    _reject_bare_string(keys, "sort keys")
    result = []
    for key in keys:
        if isinstance(key, SortKey):
            result.append(make_sort_key(key.column, key.direction, policy))
        elif isinstance(key, tuple) and len(key) == 2:
            result.append(make_sort_key(key[0], key[1], policy))
        else:
            result.append(make_sort_key(key, Direction.ASC, policy))
    if not result:
        raise InvalidIdentifier(list(keys), reason="arrange needs at least one key")
    _check_unique((k.column.name for k in result), "arrange")
    return tuple(result)


def _check_unique(names: Iterable[str], stage: str) -> None:
    seen = set()
    for name in names:
        if name in seen:
            raise DuplicateResultName(name, stage)
        seen.add(name)
