"""
TableEngine implementations.

The DSL core never imports this package; engines depend on the core, not the
other way round.
"""

from .arrow import ArrowTableEngine, ArrowExpressionEvaluator, ExpressionParser

__all__ = [
    "ArrowTableEngine",
    "ArrowExpressionEvaluator",
    "ExpressionParser",
]
