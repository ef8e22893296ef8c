"""Validation and failure-scenario testing for single-node edge clusters."""

__version__ = "0.1.0"
