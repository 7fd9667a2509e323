"""HTTP surface: ingress, health, metrics and dead-letter routes."""
