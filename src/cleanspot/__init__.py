"""CleanSpot - clean playlist generation and scheduled sync."""

__version__ = "0.1.0"
