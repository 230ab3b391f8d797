"""Live review checks: bounded browser inspection runs and advisory edit locks."""

__version__ = "0.1.0"
