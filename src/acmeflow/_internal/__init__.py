"""acmeflow internal modules."""
