"""Trade Guardian - rule enforcement for live broker accounts."""

__version__ = "0.1.0"
