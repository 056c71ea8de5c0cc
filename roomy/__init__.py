"""Roomy - password-protected chat rooms on a managed backend."""

__version__ = "1.0.0"
