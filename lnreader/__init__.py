"""Local data layer for the lnreader novel library."""

__version__ = "0.1.0"
