"""Logging and alerting."""
