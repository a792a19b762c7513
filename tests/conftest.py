"""
Shared pytest fixtures for sepipe tests.

Provides a small sales dataset as an Arrow table, its declared schema, a
registered ArrowTableEngine and a recording engine for contract tests.
"""

import pyarrow as pa
import pytest

from sepipe.dsl.engine import TableEngine
from sepipe.engines.arrow import ArrowTableEngine


@pytest.fixture
def sales_rows():
    """Sample sales rows."""
    return [
        {"region": "east", "year": 2023, "product": "a", "sales": 10.0, "units": 1},
        {"region": "east", "year": 2023, "product": "b", "sales": 20.0, "units": 2},
        {"region": "east", "year": 2024, "product": "a", "sales": 5.0, "units": 1},
        {"region": "west", "year": 2023, "product": "a", "sales": 7.0, "units": 3},
        {"region": "west", "year": 2024, "product": "b", "sales": 3.0, "units": 1},
        {"region": "west", "year": 2024, "product": "b", "sales": 1.0, "units": 4},
    ]


@pytest.fixture
def sales_table(sales_rows):
    """The sales rows as a PyArrow table."""
    return pa.Table.from_pylist(sales_rows)


@pytest.fixture
def sales_schema():
    """Declared schema for the sales table (types are opaque to the core)."""
    return {"region": "string", "year": "int64", "product": "string",
            "sales": "double", "units": "int64"}


@pytest.fixture
def engine(sales_table):
    """ArrowTableEngine with the sales table registered as 'sales'."""
    return ArrowTableEngine({"sales": sales_table})


@pytest.fixture
def recording_engine(sales_table):
    """
    TableEngine that records execute() calls instead of running anything.

    Yields:
        RecordingEngine: exposes .calls and an optional .raise_on_execute
    """
    class RecordingEngine(TableEngine):
        def __init__(self):
            self.calls = []
            self.raise_on_execute = None

        def get_schema(self, table):
            return sales_table.schema

        def execute(self, plan, table):
            self.calls.append((plan, table))
            if self.raise_on_execute is not None:
                raise self.raise_on_execute
            return {"table": table, "columns": plan.columns}

    return RecordingEngine()
