"""Adapters binding the core to storage backends and web frameworks."""
