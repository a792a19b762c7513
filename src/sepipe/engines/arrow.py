"""
Arrow Table Engine

Reference TableEngine over in-memory PyArrow tables. It executes compiled
plans stage by stage with vectorized Arrow compute and evaluates expression
fragments written in a small expression language (see expressions.lark):

- literals: 1, 2.5, "text", True, False, None
- column names, + - * /, comparisons, and / or / not, parentheses
- scalar functions: abs, lower, upper, round, coalesce, is_null
- in summarize only, one top-level aggregate call:
  sum, mean, min, max, count, n(), n_distinct, stddev

Every failure surfaces as EngineError.
"""

from __future__ import annotations

import ast
import itertools
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple, Union

import pyarrow as pa
import pyarrow.compute as pc
from lark import Lark, Token, Tree
from lark.exceptions import UnexpectedInput

from ..dsl.compiler import Plan, StageDescriptor
from ..dsl.engine import TableEngine
from ..sepipe_exceptions import EngineError

logger = logging.getLogger(__name__)


# =============================================================================
# Arrow Table Utilities
# =============================================================================

def dict_list_to_table(data: List[Dict[str, Any]]) -> pa.Table:
    """Convert list of dicts to PyArrow table, keeping first-seen key order."""
    if not data:
        return pa.table({})

    keys: Dict[str, None] = {}
    for row in data:
        for key in row:
            keys.setdefault(key, None)

    return pa.table({key: [row.get(key) for row in data] for key in keys})


def ensure_table(data: Union[pa.Table, List[Dict[str, Any]]]) -> pa.Table:
    """Ensure data is a PyArrow table."""
    if isinstance(data, pa.Table):
        return data
    return dict_list_to_table(data)


# =============================================================================
# Expression parsing
# =============================================================================

class ExpressionParser:
    """
    Lark parser for the engine expression language.

    ::: This is-in-layer Infrastructure-Layer.
    ::: This is a parser.
    ::: This is-in-process Main-Process.
    ::: This is stateless.
    """

    _instance: Optional["ExpressionParser"] = None
    _parser: Optional[Lark] = None
    _lock = threading.Lock()

    def __new__(cls) -> "ExpressionParser":
        """Singleton pattern for parser reuse."""
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        with ExpressionParser._lock:
            if ExpressionParser._parser is not None:
                return

            grammar_path = Path(__file__).parent / "expressions.lark"
            if not grammar_path.exists():
                raise FileNotFoundError(f"Grammar file not found: {grammar_path}")

            with open(grammar_path, "r", encoding="utf-8") as f:
                grammar = f.read()

            ExpressionParser._parser = Lark(
                grammar,
                start="start",
                parser="lalr",
                propagate_positions=True,
            )

    def parse(self, source: str) -> Union[Tree, Token]:
        """Parse an expression fragment, raising EngineError on bad syntax."""
        try:
            return self._parser.parse(source)
        except UnexpectedInput as e:
            raise EngineError(
                f"Cannot parse expression {source!r} at line {e.line}, column {e.column}"
            ) from e


# =============================================================================
# Expression evaluation
# =============================================================================

SCALAR_FUNCTIONS = {
    "abs": lambda x: pc.abs(x),
    "lower": lambda x: pc.utf8_lower(x),
    "upper": lambda x: pc.utf8_upper(x),
    "round": lambda x, ndigits=0: pc.round(x, ndigits=_literal_int(ndigits)),
    "coalesce": lambda *args: pc.coalesce(*args),
    "is_null": lambda x: pc.is_null(x),
}

# expression name -> pyarrow hash aggregate name
AGGREGATE_FUNCTIONS = {
    "sum": "sum",
    "mean": "mean",
    "min": "min",
    "max": "max",
    "count": "count",
    "n": "count",
    "n_distinct": "count_distinct",
    "stddev": "stddev",
}


def _literal_int(value: Any) -> int:
    if isinstance(value, pa.Scalar):
        value = value.as_py()
    if not isinstance(value, int):
        raise EngineError(f"Expected an integer literal, got {value!r}")
    return value


def _as_float(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return pc.cast(value, pa.float64())


class ArrowExpressionEvaluator:
    """
    Evaluates parsed expressions against a PyArrow table.

    Each node type is handled by an `_eval_<rule>` method; columns evaluate
    to Arrow arrays and literals to Python values.

    ::: This is-in-layer Infrastructure-Layer.
    ::: This is a evaluator.
    ::: This is-in-process Main-Process.
    ::: This is stateless.
    """

    def __init__(self, table: pa.Table):
        self.table = table

    def evaluate(self, node: Union[Tree, Token]) -> Any:
        if isinstance(node, Token):
            raise EngineError(f"Unexpected token {node!r}")

        method = getattr(self, f"_eval_{node.data}", None)
        if method is None:
            raise EngineError(f"Unsupported expression construct: {node.data}")
        return method(node)

    def column_array(self, node: Union[Tree, Token]) -> pa.ChunkedArray:
        """Evaluate node and broadcast scalars to the table length."""
        value = self.evaluate(node)
        if isinstance(value, (pa.ChunkedArray, pa.Array)):
            return value
        if isinstance(value, pa.Scalar):
            value = value.as_py()
        return pa.chunked_array([pa.array([value] * self.table.num_rows)])

    # --------------------------------------------------------
    # Literals and references
    # --------------------------------------------------------

    def _eval_number(self, node: Tree) -> Any:
        text = str(node.children[0])
        if any(c in text for c in ".eE"):
            return float(text)
        return int(text)

    def _eval_string(self, node: Tree) -> str:
        return ast.literal_eval(str(node.children[0]))

    def _eval_true(self, node: Tree) -> bool:
        return True

    def _eval_false(self, node: Tree) -> bool:
        return False

    def _eval_null(self, node: Tree) -> None:
        return None

    def _eval_column(self, node: Tree) -> pa.ChunkedArray:
        name = str(node.children[0])
        if name not in self.table.column_names:
            raise EngineError(f"Column not found: {name}")
        return self.table.column(name)

    # --------------------------------------------------------
    # Operators
    # --------------------------------------------------------

    def _binary(self, node: Tree, fn) -> Any:
        left, right = (self.evaluate(c) for c in node.children)
        return fn(left, right)

    def _eval_add(self, node: Tree) -> Any:
        return self._binary(node, pc.add)

    def _eval_sub(self, node: Tree) -> Any:
        return self._binary(node, pc.subtract)

    def _eval_mul(self, node: Tree) -> Any:
        return self._binary(node, pc.multiply)

    def _eval_div(self, node: Tree) -> Any:
        return self._binary(node, lambda a, b: pc.divide(_as_float(a), _as_float(b)))

    def _eval_neg(self, node: Tree) -> Any:
        return pc.negate(self.evaluate(node.children[0]))

    def _eval_eq(self, node: Tree) -> Any:
        return self._binary(node, pc.equal)

    def _eval_ne(self, node: Tree) -> Any:
        return self._binary(node, pc.not_equal)

    def _eval_lt(self, node: Tree) -> Any:
        return self._binary(node, pc.less)

    def _eval_le(self, node: Tree) -> Any:
        return self._binary(node, pc.less_equal)

    def _eval_gt(self, node: Tree) -> Any:
        return self._binary(node, pc.greater)

    def _eval_ge(self, node: Tree) -> Any:
        return self._binary(node, pc.greater_equal)

    def _eval_and_op(self, node: Tree) -> Any:
        return self._binary(node, pc.and_kleene)

    def _eval_or_op(self, node: Tree) -> Any:
        return self._binary(node, pc.or_kleene)

    def _eval_not_op(self, node: Tree) -> Any:
        return pc.invert(self.evaluate(node.children[0]))

    # --------------------------------------------------------
    # Function calls
    # --------------------------------------------------------

    def _eval_call(self, node: Tree) -> Any:
        name = str(node.children[0])
        if name in AGGREGATE_FUNCTIONS:
            raise EngineError(f"Aggregate function '{name}' is only allowed at the top of a summarize expression")
        fn = SCALAR_FUNCTIONS.get(name)
        if fn is None:
            raise EngineError(f"Unknown function: {name}")
        args = [self.evaluate(c) for c in node.children[1:]]
        try:
            return fn(*args)
        except TypeError as e:
            raise EngineError(f"Bad arguments to {name}(): {e}") from e


# =============================================================================
# Engine
# =============================================================================

class ArrowTableEngine(TableEngine):
    """
    TableEngine backed by named in-memory PyArrow tables.

    Usage:
        engine = ArrowTableEngine({"sales": table})
        result = Pipeline.from_engine(engine, "sales").select(["region"]).execute(engine)

    ::: This is-in-layer Infrastructure-Layer.
    ::: This is a engine.
    ::: This is-in-process Main-Process.
    """

    def __init__(self, tables: Optional[Mapping[str, Union[pa.Table, List[Dict[str, Any]]]]] = None):
        self._tables: Dict[str, pa.Table] = {}
        self.parser = ExpressionParser()
        for name, data in (tables or {}).items():
            self.register(name, data)

    def register(self, name: str, data: Union[pa.Table, List[Dict[str, Any]]]) -> None:
        """Add or replace a named table."""
        self._tables[name] = ensure_table(data)

    def table(self, name: str) -> pa.Table:
        try:
            return self._tables[name]
        except KeyError:
            raise EngineError(f"Unknown table: {name}") from None

    def get_schema(self, table: str) -> pa.Schema:
        return self.table(table).schema

    def execute(self, plan: Plan, table: str) -> pa.Table:
        current = self.table(table)
        groups: Tuple[str, ...] = ()

        for stage in plan.stages:
            handler = getattr(self, f"_execute_{stage.op}", None)
            if handler is None:
                raise EngineError(f"[stage {stage.index}] Unsupported op: {stage.op}")
            try:
                current, groups = handler(stage, current, groups)
            except EngineError as e:
                raise EngineError(f"[stage {stage.index}] {stage.op} failed: {e}") from e
            except (pa.ArrowException, ValueError, TypeError, KeyError) as e:
                raise EngineError(f"[stage {stage.index}] {stage.op} failed: {e}") from e
            logger.debug(f"Stage {stage.index} {stage.op}: {current.num_rows} row(s)")

        return current

    # --------------------------------------------------------
    # Stage handlers
    # --------------------------------------------------------

    def _execute_group_by(self, stage: StageDescriptor, table: pa.Table, groups):
        return table, tuple(stage.args["columns"])

    def _execute_ungroup(self, stage: StageDescriptor, table: pa.Table, groups):
        return table, ()

    def _execute_select(self, stage: StageDescriptor, table: pa.Table, groups):
        return table.select(stage.args["columns"]), groups

    def _execute_rename(self, stage: StageDescriptor, table: pa.Table, groups):
        renames = {r["from"]: r["to"] for r in stage.args["columns"]}
        table = table.rename_columns([renames.get(n, n) for n in table.column_names])
        return table, tuple(renames.get(g, g) for g in groups)

    def _execute_filter(self, stage: StageDescriptor, table: pa.Table, groups):
        evaluator = ArrowExpressionEvaluator(table)
        mask = evaluator.column_array(self.parser.parse(stage.args["expr"]))
        return table.filter(mask), groups

    def _execute_arrange(self, stage: StageDescriptor, table: pa.Table, groups):
        if table.num_rows == 0:
            return table, groups
        sort_keys = [
            (k["column"], "descending" if k["direction"] == "desc" else "ascending")
            for k in stage.args["keys"]
        ]
        indices = pc.sort_indices(table, sort_keys=sort_keys)
        return table.take(indices), groups

    def _execute_mutate(self, stage: StageDescriptor, table: pa.Table, groups):
        for item in stage.args["exprs"]:
            name = item["name"]
            evaluator = ArrowExpressionEvaluator(table)
            column = evaluator.column_array(self.parser.parse(item["expr"]))
            if name in table.column_names:
                table = table.set_column(table.column_names.index(name), name, column)
            else:
                table = table.append_column(name, column)
        return table, groups

    def _execute_summarize(self, stage: StageDescriptor, table: pa.Table, groups):
        # Evaluate every aggregate argument into a scratch column first, then
        # aggregate those columns in one pass.
        scratch: Dict[str, pa.ChunkedArray] = {}
        specs: List[Tuple[str, str, str]] = []  # (result_name, scratch column, arrow function)
        evaluator = ArrowExpressionEvaluator(table)
        taken = set(table.column_names)

        for item in stage.args["exprs"]:
            fn_name, arg = self._aggregate_call(item["expr"])
            column_name = self._scratch_name(taken, AGGREGATE_FUNCTIONS[fn_name])
            if arg is None:
                scratch[column_name] = pa.chunked_array([pa.array([1] * table.num_rows, pa.int64())])
            else:
                scratch[column_name] = evaluator.column_array(arg)
            specs.append((item["name"], column_name, AGGREGATE_FUNCTIONS[fn_name]))

        if groups:
            return self._grouped_aggregate(table, groups, scratch, specs), ()

        result = {}
        for result_name, column_name, arrow_fn in specs:
            result[result_name] = [self._scalar_aggregate(scratch[column_name], arrow_fn)]
        return pa.table(result), ()

    @staticmethod
    def _scratch_name(taken: Set[str], arrow_fn: str) -> str:
        """Scratch column name unused in taken, also after Arrow appends _<fn>."""
        for n in itertools.count():
            name = f"__agg_{n}"
            if name not in taken and f"{name}_{arrow_fn}" not in taken:
                taken.add(name)
                return name

    def _aggregate_call(self, source: str):
        tree = self.parser.parse(source)
        if not (isinstance(tree, Tree) and tree.data == "call"):
            raise EngineError(f"Summarize expression must be an aggregate call: {source!r}")
        fn_name = str(tree.children[0])
        if fn_name not in AGGREGATE_FUNCTIONS:
            raise EngineError(f"Unknown aggregate function: {fn_name}")
        args = tree.children[1:]
        if fn_name == "n":
            if args:
                raise EngineError("n() takes no arguments")
            return fn_name, None
        if len(args) != 1:
            raise EngineError(f"{fn_name}() takes exactly one argument")
        return fn_name, args[0]

    @staticmethod
    def _scalar_aggregate(column: pa.ChunkedArray, arrow_fn: str) -> Any:
        fn = getattr(pc, arrow_fn)
        return fn(column).as_py()

    @staticmethod
    def _grouped_aggregate(table: pa.Table, groups: Tuple[str, ...],
                           scratch: Dict[str, pa.ChunkedArray],
                           specs: List[Tuple[str, str, str]]) -> pa.Table:
        work = table.select(list(groups))
        for column_name, column in scratch.items():
            work = work.append_column(column_name, column)

        aggregated = work.group_by(list(groups)).aggregate(
            [(column_name, arrow_fn) for _, column_name, arrow_fn in specs]
        )

        columns = {g: aggregated.column(g) for g in groups}
        for result_name, column_name, arrow_fn in specs:
            columns[result_name] = aggregated.column(f"{column_name}_{arrow_fn}")
        return pa.table(columns)
