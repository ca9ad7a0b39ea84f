"""Match analysis orchestration: credential rotation, enrichment, caching and parsing."""

__version__ = "0.1.0"
