"""swap-engine: trailing-stop and batch swap order engine."""

__version__ = "0.1.0"
