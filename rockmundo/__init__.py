"""Probabilistic outcome resolution for the Rockmundo game world."""

__version__ = "1.0.0"
