"""Event log storage backends."""
