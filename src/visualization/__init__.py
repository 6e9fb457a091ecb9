"""
Visualization Module
====================

Plotting utilities.
    - training_curves: Reward, goal rate, loss and exploration curves
"""

from .training_curves import (
    load_history,
    plot_training_curves,
    rolling_moving_average,
)

__all__ = [
    "load_history",
    "plot_training_curves",
    "rolling_moving_average",
]
