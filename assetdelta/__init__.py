"""assetdelta: track releases of a remotely hosted asset bundle and fetch only what changed."""

__version__ = "0.1.0"
