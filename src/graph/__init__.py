"""Dependency graph construction and topology planning."""
