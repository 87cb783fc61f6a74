"""HTTP API: allowlist dependency, error envelope and /api/nid routes."""
