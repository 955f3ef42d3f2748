"""W-2 extraction, federal Form 1040 computation and the guided filing workflow."""

__version__ = "0.1.0"
