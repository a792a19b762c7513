"""
Tests for the reference ArrowTableEngine: compiled plans executed end to end
over in-memory PyArrow tables.
"""

import pyarrow as pa
import pytest

from sepipe.dsl.hygiene import substitute
from sepipe.dsl.pipeline import Pipeline
from sepipe.engines.arrow import (
    ArrowExpressionEvaluator,
    ArrowTableEngine,
    ExpressionParser,
    dict_list_to_table,
)
from sepipe.sepipe_exceptions import EngineError


@pytest.fixture
def sales(engine):
    return Pipeline.from_engine(engine, "sales")


class TestEngineBasics:

    def test_register_rows(self):
        engine = ArrowTableEngine()
        engine.register("t", [{"a": 1}, {"a": 2, "b": "x"}])
        schema = engine.get_schema("t")
        assert schema.names == ["a", "b"]

    def test_unknown_table(self, engine):
        with pytest.raises(EngineError):
            engine.get_schema("nope")

    def test_dict_list_to_table_empty(self):
        assert dict_list_to_table([]).num_rows == 0

    def test_parser_singleton(self):
        assert ExpressionParser() is ExpressionParser()


class TestGroupedSummaries:

    def test_group_by_summarize(self, engine, sales):
        result = (
            sales.group_by(["region"])
            .summarize({"total": "sum(sales)", "rows": "n()"})
            .arrange(["region"])
            .execute(engine)
        )
        assert result.column_names == ["region", "total", "rows"]
        assert result.to_pylist() == [
            {"region": "east", "total": 35.0, "rows": 3},
            {"region": "west", "total": 11.0, "rows": 3},
        ]

    def test_multiple_groups_and_aggregates(self, engine, sales):
        result = (
            sales.group_by(["region", "year"])
            .summarize({
                "avg": "mean(sales)",
                "products": "n_distinct(product)",
                "top": "max(sales * units)",
            })
            .arrange(["region", "year"])
            .execute(engine)
        )
        rows = result.to_pylist()
        assert [(r["region"], r["year"]) for r in rows] == [
            ("east", 2023), ("east", 2024), ("west", 2023), ("west", 2024),
        ]
        assert rows[0]["avg"] == pytest.approx(15.0)
        assert rows[0]["products"] == 2
        assert rows[0]["top"] == pytest.approx(40.0)
        assert rows[3]["products"] == 1

    def test_group_column_named_like_scratch_column(self):
        engine = ArrowTableEngine({"t": pa.table({
            "__agg_0": ["a", "a", "b"],
            "__agg_1_sum": [1, 1, 1],
            "v": [1, 2, 3],
        })})
        result = (
            Pipeline.from_engine(engine, "t")
            .group_by(["__agg_0", "__agg_1_sum"])
            .summarize({"s": "sum(v)", "k": "n()"})
            .arrange(["__agg_0"])
            .execute(engine)
        )
        assert result.to_pylist() == [
            {"__agg_0": "a", "__agg_1_sum": 1, "s": 3, "k": 2},
            {"__agg_0": "b", "__agg_1_sum": 1, "s": 3, "k": 1},
        ]

    def test_ungrouped_summarize(self, engine, sales):
        result = sales.summarize({
            "total": "sum(sales)",
            "rows": "n()",
            "biggest": "max(sales)",
            "counted": "count(units)",
        }).execute(engine)
        assert result.to_pylist() == [
            {"total": 46.0, "rows": 6, "biggest": 20.0, "counted": 6},
        ]

    def test_summarize_with_substituted_expression(self, engine, sales):
        measure = "units"
        expr = substitute("sum(v)", {"v": measure}).text
        result = sales.summarize({"total_units": expr}).execute(engine)
        assert result.to_pylist() == [{"total_units": 12}]

    def test_summarize_rejects_compound_aggregates(self, engine, sales):
        with pytest.raises(EngineError):
            sales.summarize({"avg_units": "sum(units) / n()"}).execute(engine)

    def test_summarize_result_is_ungrouped(self, engine, sales):
        result = (
            sales.group_by(["region"])
            .summarize({"total": "sum(sales)"})
            .mutate({"share": "total / 46"})
            .arrange([("share", "desc")])
            .execute(engine)
        )
        assert result.column("region").to_pylist() == ["east", "west"]


class TestRowStages:

    def test_mutate_new_and_existing(self, engine, sales):
        result = sales.mutate({
            "ratio": "sales / units",
            "sales": "sales * 2",
            "flag": "1",
        }).execute(engine)
        assert result.column_names == ["region", "year", "product", "sales", "units", "ratio", "flag"]
        assert result.column("ratio").to_pylist()[:2] == [10.0, 10.0]
        assert result.column("sales").to_pylist()[0] == 20.0
        assert result.column("flag").to_pylist() == [1] * 6

    def test_mutate_uses_earlier_result(self, engine, sales):
        result = sales.mutate({"a": "units + 1", "b": "a * 10"}).execute(engine)
        assert result.column("b").to_pylist() == [20, 30, 20, 40, 20, 50]

    def test_scalar_functions(self, engine, sales):
        result = sales.mutate({
            "up": "upper(region)",
            "neg": "abs(-sales)",
            "third": "round(sales / 3, 1)",
            "missing": "is_null(product)",
        }).execute(engine)
        row = result.to_pylist()[0]
        assert row["up"] == "EAST"
        assert row["neg"] == 10.0
        assert row["third"] == pytest.approx(3.3)
        assert row["missing"] is False

    def test_filter(self, engine, sales):
        result = sales.filter("sales > 5 and region == 'east'").execute(engine)
        assert result.column("sales").to_pylist() == [10.0, 20.0]

    def test_filter_or_not(self, engine, sales):
        result = sales.filter("not (year == 2023) or product == \"a\"").execute(engine)
        assert result.num_rows == 5

    def test_arrange_descending(self, engine, sales):
        result = sales.arrange([("sales", "desc")]).execute(engine)
        assert result.column("sales").to_pylist() == [20.0, 10.0, 7.0, 5.0, 3.0, 1.0]

    def test_arrange_multiple_keys(self, engine, sales):
        result = sales.arrange(["region", ("units", "desc")]).execute(engine)
        assert result.column("units").to_pylist() == [2, 1, 1, 4, 3, 1]

    def test_select_and_rename(self, engine, sales):
        result = sales.select(["sales", "region"]).rename({"sales": "amount"}).execute(engine)
        assert result.column_names == ["amount", "region"]


class TestEngineErrors:

    def test_aggregate_in_mutate(self, engine, sales):
        with pytest.raises(EngineError):
            sales.mutate({"t": "sum(sales)"}).execute(engine)

    def test_summarize_requires_aggregate(self, engine, sales):
        with pytest.raises(EngineError):
            sales.summarize({"t": "sales + 1"}).execute(engine)

    def test_unknown_function(self, engine, sales):
        with pytest.raises(EngineError):
            sales.mutate({"t": "frobnicate(sales)"}).execute(engine)

    def test_parse_error(self, engine, sales):
        with pytest.raises(EngineError) as exc_info:
            sales.filter("sales >").execute(engine)
        assert "stage 0" in str(exc_info.value)

    def test_n_takes_no_arguments(self, engine, sales):
        with pytest.raises(EngineError):
            sales.summarize({"t": "n(sales)"}).execute(engine)


class TestEvaluator:

    def test_broadcast_literal(self):
        table = pa.table({"x": [1, 2, 3]})
        evaluator = ArrowExpressionEvaluator(table)
        column = evaluator.column_array(ExpressionParser().parse("2 + 3"))
        assert column.to_pylist() == [5, 5, 5]

    def test_division_is_float(self):
        table = pa.table({"x": [1, 2, 3]})
        evaluator = ArrowExpressionEvaluator(table)
        column = evaluator.column_array(ExpressionParser().parse("x / 2"))
        assert column.to_pylist() == [0.5, 1.0, 1.5]

    def test_missing_column(self):
        evaluator = ArrowExpressionEvaluator(pa.table({"x": [1]}))
        with pytest.raises(EngineError):
            evaluator.evaluate(ExpressionParser().parse("y + 1"))
