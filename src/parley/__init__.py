"""Parley — terminal chat client with a self-healing gateway connection."""

__version__ = "0.4.0"
