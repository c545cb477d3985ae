"""Core domain plugins of the XRD catalog server."""
