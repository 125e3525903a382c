"""Per-requirement assessment validation pipeline."""

__version__ = "0.1.0"
