import re
from urllib.parse import urlparse


def normalize_text(text: str) -> str:
    text = text or ""
    text = text.strip()
    text = re.sub(r"[ \t]+", " ", text)
    return text


def normalize_url(url: str) -> str:
    url = (url or "").strip()
    return url


def is_absolute_url(value: str) -> bool:
    """True when value has both a scheme and a host, e.g. https://example.com/pay."""
    value = normalize_url(value)
    if not value or any(ch.isspace() for ch in value):
        return False
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return bool(parsed.scheme) and bool(parsed.netloc)


def describe_upload(kind: str, filename: str | None) -> str:
    """Short content description stored alongside a verdict, e.g. 'Image: scan.png'."""
    return f"{kind}: {filename or 'upload'}"
