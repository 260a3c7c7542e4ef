from urllib.parse import urlparse


def extract_domain(raw_url: str | None) -> str:
    """Registrable domain used for trust and usage lookups; "" when unparsable."""
    if not raw_url or not isinstance(raw_url, str):
        return ""
    try:
        parsed = urlparse(raw_url.strip())
        host = parsed.hostname
    except ValueError:
        return ""
    if not parsed.scheme or not host:
        return ""
    host = host.lower().rstrip(".")
    if host.startswith("www."):
        host = host[4:]
    return host


def is_http_url(raw_url: str | None) -> bool:
    if not raw_url:
        return False
    try:
        parsed = urlparse(raw_url.strip())
    except ValueError:
        return False
    return parsed.scheme.lower() in {"http", "https"} and bool(parsed.netloc)


def domain_matches(domain: str, candidates: set[str]) -> bool:
    """True when `domain` or one of its parent domains is in `candidates`."""
    if not domain or not candidates:
        return False
    labels = domain.split(".")
    for index in range(len(labels) - 1):
        if ".".join(labels[index:]) in candidates:
            return True
    return domain in candidates
