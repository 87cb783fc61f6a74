"""nid-service command line tools."""
