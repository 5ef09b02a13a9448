import hashlib
import re
from urllib.parse import parse_qs, urlparse

_SLUG_VIEW_RE = re.compile(r"/jobs/view/[^/?]+-(\d+)(?:/|\?|$)")
_NUMERIC_VIEW_RE = re.compile(r"/jobs/view/(\d+)")


def url_hash(url: str) -> str:
    return hashlib.sha256(url.encode("utf-8")).hexdigest()


def extract_external_job_id(url: str | None) -> str | None:
    """Pull the job id out of view, search and collection URLs."""
    if not url or not isinstance(url, str):
        return None

    slug_match = _SLUG_VIEW_RE.search(url)
    if slug_match:
        return slug_match.group(1)

    numeric_match = _NUMERIC_VIEW_RE.search(url)
    if numeric_match:
        return numeric_match.group(1)

    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    values = parse_qs(parsed.query).get("currentJobId")
    if values and values[0]:
        return values[0]
    return None
