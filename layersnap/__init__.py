"""Layer change tracking, build-instruction helpers, timing and logging setup."""

__version__ = "0.1.0"