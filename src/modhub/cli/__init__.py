"""Command-line interface for modhub."""
