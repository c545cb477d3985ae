"""Catalog domain: entity queries filtered per caller."""
