"""Tor user-count dashboard backend: aggregation, anomaly overlays, refresh."""

__version__ = "0.1.0"
