"""Core infrastructure: configuration, logging, canonical JSON, catalog, partitioning."""
