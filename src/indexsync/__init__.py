"""indexsync - keep search indices in sync with a primary record store."""

__version__ = "0.1.0"
