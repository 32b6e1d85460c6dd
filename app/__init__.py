"""HTTP surface for usage-sync."""
