"""
Delta-neutral position engine.

Opens, rebalances and closes leveraged delta-neutral positions: aUST
collateral backs a short CDP while an equal long sits in an AMM pool.
"""

__version__ = "1.0.0"

# Re-export main classes
from delta_neutral.engine import PositionEngine
