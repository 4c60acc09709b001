"""Topic fan-out, subscription filters and subscriber channels."""
