"""scrapestack: a pull-based metrics pipeline.

An instrumented application exposes ``/metrics/``, a collector scrapes it
on a schedule into a sample store and answers queries, and a dashboard
service evaluates panels against the collector. The ``topology`` module
renders the files that wire the three processes together.
"""

from scrapestack.adapters.logging import configure_logging, get_logger

__version__ = "0.1.0"

__all__ = ["__version__", "configure_logging", "get_logger"]
