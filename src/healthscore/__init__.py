"""
healthscore - Fleet health scoring for database instances.

Pluggable collectors gather one category of metrics per instance, a threshold
evaluator turns raw values into 0-100 category scores, and an aggregator folds
the latest category scores into one weighted, capped composite score.

Subpackages:
- healthscore.core: models, errors, logging, settings, events, persistence
- healthscore.scoring: threshold evaluation and composite aggregation
- healthscore.collection: metric adapters, exclusions, the collector executor
- healthscore.scheduling: collector scheduler and execution audit log
- healthscore.cli: operator CLI
"""

__version__ = "0.1.0"
