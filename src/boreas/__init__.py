"""Derivative-free optimization of expensive black-box objectives."""

__version__ = "0.1.0"
