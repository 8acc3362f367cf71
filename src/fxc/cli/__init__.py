"""Command-line interface for the currency converter cache engine."""
