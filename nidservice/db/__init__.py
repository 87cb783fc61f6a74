"""Persistence for the allowlist and the request audit log."""
