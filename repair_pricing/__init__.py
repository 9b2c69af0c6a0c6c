"""Repair pricing engine: materials, processes and tasks priced from shared settings."""

__version__ = "0.1.0"
