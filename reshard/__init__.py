"""Phase execution engine for hash ring resharding."""

__version__ = "0.1.0"
