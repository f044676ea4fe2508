"""Auction-based task allocation engine."""

__version__ = "1.0.0"
