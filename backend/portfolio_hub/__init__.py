"""Provider aggregation engine for multi-broker portfolio and income views."""

__version__ = "0.1.0"
