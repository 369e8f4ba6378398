"""Sentinel - live incident map engine."""

__version__ = "0.1.0"
