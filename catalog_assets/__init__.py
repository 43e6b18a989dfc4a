"""Content asset storage and image set reconciliation for the catalog."""

__version__ = "0.4.0"
