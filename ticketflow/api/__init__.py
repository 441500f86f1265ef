"""HTTP surface over the lifecycle core."""
