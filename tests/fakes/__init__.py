"""Deterministic in-memory collaborators for tests."""
