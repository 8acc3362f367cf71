"""
Offline-first currency converter cache engine.

Serves exchange rates, currency lists and the application's own assets
whether the network is fast, slow, flaky or absent.
"""

__version__ = "0.1.0"
