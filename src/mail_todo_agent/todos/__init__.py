"""TODO derivation: identity, normalization, merge/lifecycle rules and collection."""
