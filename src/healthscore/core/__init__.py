"""healthscore.core -- shared primitives for the collection/scoring engine.

Architecture::

    models.py      Dataclass models for collectors, rules, snapshots, scores
    errors.py      Structured error hierarchy (HealthScoreError and friends)
    logging.py     structlog configuration + get_logger
    settings.py    pydantic-settings configuration (HEALTHSCORE_*)
    events/        Notification bus (InstanceScoreUpdated, CollectorRunCompleted)
    store.py       Persistence collaborator protocol
    memory.py      In-memory store (tests, single-process deployments)
    orm/           SQLAlchemy 2.0 tables + store implementation
"""
