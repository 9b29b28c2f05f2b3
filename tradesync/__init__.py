"""tradesync: chunked trade-history sync with a month-partitioned local cache."""

__version__ = "1.0.0"
