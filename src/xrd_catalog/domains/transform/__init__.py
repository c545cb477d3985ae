"""Transform domain: preview catalog entities for XRD documents."""
