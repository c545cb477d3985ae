"""Per-cluster discovery of XRDs, Compositions and composite resources."""
