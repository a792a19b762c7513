"""
TableEngine collaborator contract.

The core only ever calls get_schema() (to start a pipeline) and execute()
(with an already compiled plan). Whatever execute() returns is handed back
to the caller untouched.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from ..sepipe_exceptions import EngineError
from .compiler import Plan, compile_pipeline
from .pipeline import Pipeline

logger = logging.getLogger(__name__)


class TableEngine(ABC):
    """
    Abstract execution engine for compiled plans.

    ::: This is-in-layer Domain-Specific-Language-Layer.
    ::: This is a engine.
    ::: This is-in-process Main-Process.
    """

    @abstractmethod
    def get_schema(self, table: str) -> Any:
        """Return the column -> type mapping (or a Schema) of table."""
        pass

    @abstractmethod
    def execute(self, plan: Plan, table: str) -> Any:
        """Run plan against table; raise EngineError on failure."""
        pass


def execute_pipeline(pipeline: Pipeline, engine: TableEngine,
                     table: Optional[str] = None) -> Any:
    """
    Compile pipeline and execute the plan on engine.

    Compilation errors propagate before the engine is touched. EngineError
    from the engine propagates unchanged; any other exception it raises is
    wrapped in EngineError.
    """
    plan = compile_pipeline(pipeline)
    target = table or plan.table
    if target is None:
        raise EngineError("No table given and the pipeline has no source table")

    logger.debug(f"Executing {len(plan.stages)} stage(s) on table '{target}'")
    try:
        return engine.execute(plan, target)
    except EngineError:
        raise
    except Exception as e:
        raise EngineError(f"Engine failed: {type(e).__name__}: {e}") from e
