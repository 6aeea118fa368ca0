"""Application index engine for desktop launchers."""

__version__ = "0.1.0"
