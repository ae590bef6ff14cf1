"""Core engine: snapshot models, metrics tracker, alert evaluator, session."""
