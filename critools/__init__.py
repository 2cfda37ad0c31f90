"""Configuration, test context, CRI interfaces, validation checks and benchmark result handling for CRI container runtimes."""

__version__ = "0.1.0"