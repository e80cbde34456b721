"""Sequence Builder CLI -- key material, login, and project management for AI agents."""

__version__ = "0.1.0"
