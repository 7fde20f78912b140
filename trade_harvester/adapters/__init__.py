"""Adapters translating upstream HTTP APIs into page results."""

from .discovery import SourceDiscovery, merge_sources
from .http_json import JsonPageFetcher, dig

__all__ = ["JsonPageFetcher", "SourceDiscovery", "dig", "merge_sources"]
