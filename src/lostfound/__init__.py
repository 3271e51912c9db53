"""lostfound: change tracking, AI enrichment and claim matching for found items."""

__version__ = "0.1.0"
