"""News ingestion pipeline with a real-time distribution hub."""

__version__ = "0.1.0"
