"""Adapters for external collaborators: object stores, key-value stores, publishers."""
