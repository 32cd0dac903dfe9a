"""Embedding providers and backends."""
