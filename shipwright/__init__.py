"""shipwright: declarative CI/CD pipeline engine."""

__version__ = "0.4.0"
