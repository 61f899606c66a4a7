"""
Weights: per-user interest model over the topic hierarchy.

- tuning: named, overridable magnitudes
- compensation: pure skip-compensation rules
- model: WeightModel (plan, apply, replay, snapshot)
"""

from triviafeed.weights.compensation import SkipAdjustment, skip_adjustments
from triviafeed.weights.model import WeightModel
from triviafeed.weights.tuning import WeightTuning

__all__ = [
    "SkipAdjustment",
    "WeightModel",
    "WeightTuning",
    "skip_adjustments",
]
