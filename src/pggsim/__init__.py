"""Evolutionary Public Goods Game simulation on population networks."""

__version__ = "0.1.0"
