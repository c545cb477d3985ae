"""Multi-cluster Crossplane XRD discovery and catalog server."""

__version__ = "0.1.0"
