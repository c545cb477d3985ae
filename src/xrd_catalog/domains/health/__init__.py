"""Health domain: cluster reachability and cache statistics."""
