"""Live exam session monitoring and violation risk engine."""

__version__ = "1.0.0"
