"""Encoders for the exposition format and NDJSON."""
