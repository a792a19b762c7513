"""
Unit tests for the pipeline compiler and the execute_pipeline contract.
"""

import json

import pytest

from sepipe.dsl.compiler import PipelineCompiler, compile_pipeline
from sepipe.dsl.engine import execute_pipeline
from sepipe.dsl.hygiene import substitute
from sepipe.dsl.pipeline import Pipeline
from sepipe.sepipe_exceptions import (
    CompileError,
    EngineError,
    SchemaMismatch,
    UnknownColumn,
)


@pytest.fixture
def base(sales_schema):
    return Pipeline.from_schema(sales_schema, table="sales")


class TestProjection:
    """The running schema after each kind of stage."""

    def test_group_then_summarize(self):
        p = (
            Pipeline.from_schema(["g1", "g2", "v"])
            .group_by(["g1", "g2"])
            .summarize({"m": "mean(v)"})
        )
        plan = p.compile()
        assert plan.columns == ["g1", "g2", "m"]
        assert plan.groups == ()

    def test_summarize_ungrouped(self, base):
        plan = base.summarize({"total": "sum(sales)", "rows": "n()"}).compile()
        assert plan.columns == ["total", "rows"]

    def test_select_orders_columns(self, base):
        plan = base.select(["units", "region"]).compile()
        assert plan.columns == ["units", "region"]

    def test_mutate_appends_and_replaces(self, base):
        plan = base.mutate({"sales": "sales * 2", "ratio": "sales / units"}).compile()
        assert plan.columns == ["region", "year", "product", "sales", "units", "ratio"]

    def test_mutate_can_use_earlier_results(self, base):
        plan = base.mutate({"a": "sales + 1", "b": "a * 2"}).compile()
        assert plan.columns[-2:] == ["a", "b"]

    def test_group_by_persists_until_ungroup(self, base):
        grouped = base.group_by(["region", "year"]).mutate({"x": "sales"})
        assert grouped.compile().groups == ("region", "year")
        assert grouped.ungroup().compile().groups == ()

    def test_rename_keeps_position_and_groups(self, base):
        plan = base.group_by(["region"]).rename({"region": "area"}).compile()
        assert plan.columns[0] == "area"
        assert plan.groups == ("area",)

    def test_rename_swap(self, base):
        plan = base.rename({"region": "product", "product": "region"}).compile()
        assert plan.columns == ["product", "year", "region", "sales", "units"]

    def test_filter_and_arrange_keep_schema(self, base):
        plan = base.filter("sales > 1 and region == 'east'").arrange([("sales", "desc")]).compile()
        assert plan.columns == base.source.names

    def test_compile_is_deterministic(self, base):
        p = base.group_by(["region"]).summarize({"t": "sum(sales)"}).arrange(["t"])
        assert p.compile().to_json() == p.compile().to_json()


class TestFailFast:

    def test_unknown_column_at_stage_index(self, base):
        p = (
            base.filter("sales > 0")
            .mutate({"x": "sales * 2"})
            .select(["region", "missing"])
            .arrange(["region"])
            .ungroup()
        )
        with pytest.raises(UnknownColumn) as exc_info:
            p.compile()
        err = exc_info.value
        assert err.stage_index == 2
        assert err.name == "missing"
        assert "region" in err.available

    def test_engine_never_called_on_compile_error(self, base, recording_engine):
        p = (
            base.filter("sales > 0")
            .mutate({"x": "sales * 2"})
            .select(["region", "missing"])
            .arrange(["region"])
            .ungroup()
        )
        with pytest.raises(UnknownColumn):
            execute_pipeline(p, recording_engine)
        assert recording_engine.calls == []

    def test_column_dropped_by_summarize(self, base):
        p = base.group_by(["region"]).summarize({"t": "sum(sales)"}).select(["year"])
        with pytest.raises(UnknownColumn) as exc_info:
            p.compile()
        assert exc_info.value.stage_index == 2

    def test_unknown_column_in_expression(self, base):
        with pytest.raises(UnknownColumn) as exc_info:
            base.filter("revenue > 0").compile()
        assert exc_info.value.name == "revenue"
        assert exc_info.value.stage_index == 0

    def test_summarize_cannot_see_its_own_results(self, base):
        with pytest.raises(UnknownColumn):
            base.summarize({"a": "sum(sales)", "b": "max(a)"}).compile()

    def test_mutate_cannot_see_later_results(self, base):
        with pytest.raises(UnknownColumn):
            base.mutate({"a": "b + 1", "b": "sales"}).compile()

    def test_errors_are_compile_errors(self, base):
        with pytest.raises(CompileError):
            base.arrange(["nope"]).compile()


class TestSchemaMismatch:

    def test_select_drops_group_column(self, base):
        with pytest.raises(SchemaMismatch) as exc_info:
            base.group_by(["region"]).select(["sales"]).compile()
        assert exc_info.value.name == "region"
        assert exc_info.value.stage_index == 1

    def test_mutate_overwrites_group_column(self, base):
        with pytest.raises(SchemaMismatch):
            base.group_by(["region"]).mutate({"region": "lower(region)"}).compile()

    def test_summarize_overwrites_group_column(self, base):
        with pytest.raises(SchemaMismatch):
            base.group_by(["region"]).summarize({"region": "n()"}).compile()

    def test_rename_onto_existing_column(self, base):
        with pytest.raises(SchemaMismatch):
            base.rename({"region": "year"}).compile()

    def test_untokenizable_expression(self, base):
        with pytest.raises(SchemaMismatch):
            base.filter("sales > (1").compile()


class TestReferenceCheck:
    """Which identifiers in an expression must be columns."""

    def test_call_heads_and_reserved_words_skipped(self):
        compiler = PipelineCompiler()
        names = compiler.referenced_columns(0, "round(sales, ndigits=2) if not x else None")
        assert names == ["sales", "x"]

    def test_attributes_skipped(self):
        names = PipelineCompiler().referenced_columns(0, "obj.attr + y")
        assert names == ["obj", "y"]

    def test_string_literals_skipped(self):
        names = PipelineCompiler().referenced_columns(0, "region == 'west'")
        assert names == ["region"]

    def test_agrees_with_substitution_on_keyword_arguments(self):
        expr = "g(k=y) + h(n=1)"
        names = PipelineCompiler().referenced_columns(0, expr)
        assert names == ["y"]
        assert substitute(expr, {"k": "z", "y": "sales"}).text == "g(k=sales) + h(n=1)"


class TestPlanOutput:

    def test_descriptors(self, base):
        plan = base.group_by(["region"]).summarize({"t": "sum(sales) + sum(units)"}).compile()
        assert [s.op for s in plan.stages] == ["group_by", "summarize"]
        assert [s.index for s in plan.stages] == [0, 1]
        assert plan.stages[1].inputs == ("sales", "units")
        assert plan.table == "sales"

    def test_to_json(self, sales_table):
        plan = Pipeline.from_schema(sales_table.schema, table="sales").select(["sales"]).compile()
        data = json.loads(plan.to_json())
        assert data["schema"] == {"sales": "double"}
        assert data["stages"][0]["args"] == {"columns": ["sales"]}
        assert data["groups"] == []

    def test_compile_pipeline_function(self, base):
        p = base.select(["year"])
        assert compile_pipeline(p) == p.compile()


class TestExecutePipeline:

    def test_engine_receives_plan_and_table(self, base, recording_engine):
        result = base.select(["region"]).execute(recording_engine)
        assert result == {"table": "sales", "columns": ["region"]}
        plan, table = recording_engine.calls[0]
        assert table == "sales"
        assert plan.columns == ["region"]

    def test_explicit_table_overrides(self, base, recording_engine):
        execute_pipeline(base, recording_engine, table="other")
        assert recording_engine.calls[0][1] == "other"

    def test_missing_table(self, sales_schema, recording_engine):
        p = Pipeline.from_schema(sales_schema)
        with pytest.raises(EngineError):
            p.execute(recording_engine)

    def test_engine_error_passes_through(self, base, recording_engine):
        original = EngineError("boom")
        recording_engine.raise_on_execute = original
        with pytest.raises(EngineError) as exc_info:
            base.execute(recording_engine)
        assert exc_info.value is original

    def test_other_errors_wrapped(self, base, recording_engine):
        recording_engine.raise_on_execute = RuntimeError("disk on fire")
        with pytest.raises(EngineError) as exc_info:
            base.execute(recording_engine)
        assert isinstance(exc_info.value.__cause__, RuntimeError)
