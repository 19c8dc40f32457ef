"""Machine-readable report writers."""
