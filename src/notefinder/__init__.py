"""NoteFinder - semantic similar-note recommendations for markdown vaults."""

__version__ = "0.1.0"
