"""Postings from ``<directory>/<source_id>.json`` for offline runs."""

import json
from pathlib import Path
from typing import List, Sequence

from ..errors import ScrapeError
from ..models import Posting
from .common import Scraper, parse_postings


class JsonFileScraper(Scraper):
    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def list_postings(self, source_id: str, urls: Sequence[str] = ()) -> List[Posting]:
        path = self.directory / f"{source_id}.json"
        if not path.exists():
            raise ScrapeError(f"Source file not found: {path}")
        try:
            with path.open("r", encoding="utf-8") as f:
                items = json.load(f)
        except json.JSONDecodeError as e:
            raise ScrapeError(f"Source file is not valid JSON: {path} ({e})")
        if not isinstance(items, list):
            raise ScrapeError(f"Source file must hold a JSON array: {path}")
        return parse_postings(items, source_id)
