"""Retrieval-augmented assistant over Berkshire Hathaway shareholder letters."""

__version__ = "0.1.0"
