"""MetaGate: metadata-injecting reverse proxy for single-page applications."""

__version__ = "0.1.0"
