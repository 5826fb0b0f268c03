from typing import Any, Dict, List
from urllib.parse import urlparse

REQUIRED_STR_FIELDS = ["id", "title"]
OPTIONAL_STR_FIELDS = [
    "company",
    "companyName",
    "location",
    "link",
    "applyUrl",
    "descriptionText",
]
URL_FIELDS = ["link", "applyUrl"]


def _is_non_empty_str(v: Any) -> bool:
    return isinstance(v, str) and v.strip() != ""


def _valid_url(v: str) -> bool:
    try:
        p = urlparse(v)
        return bool(p.scheme and p.netloc)
    except ValueError:
        return False


def validate_posting(data: Dict[str, Any]) -> List[str]:
    """
    Returns a list of validation error messages for a raw scraped item.
    Empty list means valid.
    """
    if not isinstance(data, dict):
        return ["Posting must be an object"]

    errors: List[str] = []

    # Numeric ids are common in scraper output; they are stringified later
    if isinstance(data.get("id"), int) and not isinstance(data.get("id"), bool):
        data = {**data, "id": str(data["id"])}

    for f in REQUIRED_STR_FIELDS:
        if f not in data:
            errors.append(f"Missing required field: {f}")
        elif not _is_non_empty_str(data[f]):
            errors.append(f"Field '{f}' must be a non-empty string")

    if not (_is_non_empty_str(data.get("company")) or _is_non_empty_str(data.get("companyName"))):
        errors.append("Missing required field: company (or companyName)")

    for f in OPTIONAL_STR_FIELDS:
        if f in data and data[f] is not None and not isinstance(data[f], str):
            errors.append(f"Field '{f}' must be a string if provided")

    for f in URL_FIELDS:
        if isinstance(data.get(f), str) and data[f].strip():
            if not _valid_url(data[f]):
                errors.append(f"Field '{f}' must be a valid absolute URL (scheme + host)")

    return errors
