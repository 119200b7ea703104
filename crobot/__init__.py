"""Run AI agents over the Agent Client Protocol and extract review findings."""

__version__ = "0.1.0"