"""dnsmasq supervision, cache statistics, metrics and end-to-end test helpers for cluster DNS."""

__version__ = "0.1.0"