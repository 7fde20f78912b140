"""Trade-Harvester: resilient harvesting of paginated, rate-limited trade APIs."""

__version__ = "0.1.0"
