"""The collector process: scrape loops, manager and HTTP API."""

from scrapestack.collector.api import create_collector_app
from scrapestack.collector.manager import ScrapeManager
from scrapestack.collector.scrape import ScrapeLoop, TargetHealth

__all__ = ["ScrapeLoop", "ScrapeManager", "TargetHealth", "create_collector_app"]
