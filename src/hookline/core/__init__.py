"""Core infrastructure: settings, logging, observability and circuit breaking."""
