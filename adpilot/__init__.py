"""AdPilot: campaign metrics aggregation and rule-based optimization engine."""

__version__ = "0.3.0"
