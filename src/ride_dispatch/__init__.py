"""Ride dispatch and lifecycle coordination engine."""

__version__ = "0.1.0"
