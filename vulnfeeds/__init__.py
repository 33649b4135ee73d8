"""Vulnerability advisory feeds loaded into a keyed advisory store and queried from it."""

__version__ = "0.1.0"