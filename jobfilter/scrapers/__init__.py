from .common import Scraper, parse_postings
from .apify import ApifyScraper
from .jsonfile import JsonFileScraper

__all__ = ["Scraper", "parse_postings", "ApifyScraper", "JsonFileScraper"]
