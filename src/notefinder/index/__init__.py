"""Chunk store, change detection and indexing."""
