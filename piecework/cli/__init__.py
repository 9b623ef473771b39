"""Command-line interface for piecework."""
