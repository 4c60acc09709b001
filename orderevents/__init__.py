"""Order-event distribution and event-store pipeline."""

__version__ = "0.1.0"
