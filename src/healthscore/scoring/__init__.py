"""Scoring: threshold evaluation and composite aggregation.

Modules
-------
thresholds   evaluate / evaluate_category / reset_thresholds
aggregator   ScoreAggregator, compose, collector_weights
"""

from healthscore.scoring.aggregator import ScoreAggregator, compose
from healthscore.scoring.thresholds import evaluate, evaluate_category

__all__ = ["ScoreAggregator", "compose", "evaluate", "evaluate_category"]
