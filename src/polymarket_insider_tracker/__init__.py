"""Polymarket Insider Tracker - wallet profiling and composite suspicion scoring."""

__version__ = "0.1.0"
