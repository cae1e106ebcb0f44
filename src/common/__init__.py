"""Shared helpers used across the registry and CLI layers."""
