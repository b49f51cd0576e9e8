"""Core infrastructure: configuration, logging, errors and resilience."""
