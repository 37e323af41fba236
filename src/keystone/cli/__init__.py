"""Command-line interface for keystone (``keystone`` console script)."""
