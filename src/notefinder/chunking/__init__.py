"""Token-budgeted text chunking."""
