"""Queue consumers."""
