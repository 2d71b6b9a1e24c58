"""Relay core services."""
