"""Core domain: models, ports, parsing, encoding and queries."""
