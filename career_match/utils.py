# career_match/utils.py
import html
import ipaddress
import re
from typing import Iterable, List, Optional
from urllib.parse import parse_qsl, unquote, urlencode, urljoin, urlsplit, urlunsplit


_ws_re = re.compile(r"\s+")

# Public suffixes with a second level; registrable domain is then three labels.
_SECOND_LEVEL_SUFFIXES = {
    "co.uk", "org.uk", "ac.uk", "gov.uk", "me.uk",
    "com.au", "net.au", "org.au",
    "co.nz", "co.jp", "co.in", "co.kr", "co.za", "co.il",
    "com.br", "com.mx", "com.sg", "com.tr", "com.cn", "com.hk", "com.tw", "com.ar",
}

_DEFAULT_PORTS = {"http": "80", "https": "443"}

SUPPORTED_SCHEMES = ("http", "https")


def collapse_ws(text: str) -> str:
    """Unescape entities and collapse whitespace (case preserved)."""
    if not text:
        return ""
    return _ws_re.sub(" ", html.unescape(text)).strip()


def host_of(url: str) -> str:
    try:
        host = urlsplit(url).hostname or ""
    except ValueError:
        return ""
    return host.rstrip(".").lower()


def registrable_domain(host: str) -> str:
    """
    Best-effort registrable domain: "jobs.eu.acme.co.uk" -> "acme.co.uk",
    "careers.acme.com" -> "acme.com". IP addresses are returned as-is.
    """
    host = (host or "").rstrip(".").lower()
    if not host:
        return ""
    try:
        ipaddress.ip_address(host)
        return host
    except ValueError:
        pass
    labels = host.split(".")
    if len(labels) <= 2:
        return host
    if ".".join(labels[-2:]) in _SECOND_LEVEL_SUFFIXES:
        return ".".join(labels[-3:])
    return ".".join(labels[-2:])


def domain_matches(host: str, domain: str) -> bool:
    """True when host is domain or one of its subdomains."""
    host = (host or "").lower()
    domain = (domain or "").lower().lstrip(".")
    if not host or not domain:
        return False
    return host == domain or host.endswith("." + domain)


def path_segments(path: str) -> List[str]:
    return [unquote(s).lower() for s in (path or "").split("/") if s]


def canonicalize_url(
    href: str,
    base: Optional[str] = None,
    keep_params: Iterable[str] = (),
) -> Optional[str]:
    """
    Resolve href against base and reduce it to scheme + host + path, keeping
    only query parameters named in keep_params (job-id carriers). Returns None
    for anything that is not an http(s) URL.
    """
    href = (href or "").strip()
    if not href:
        return None
    absolute = urljoin(base, href) if base else href
    try:
        parts = urlsplit(absolute)
        port = parts.port
    except ValueError:
        return None

    scheme = parts.scheme.lower()
    if scheme not in SUPPORTED_SCHEMES or not parts.hostname:
        return None

    host = parts.hostname.rstrip(".").lower()
    netloc = host
    if port is not None and str(port) != _DEFAULT_PORTS[scheme]:
        netloc = f"{host}:{port}"

    path = re.sub(r"/{2,}", "/", parts.path or "")
    if path != "/":
        path = path.rstrip("/")
    if path == "/":
        path = ""

    keep = {p.lower() for p in keep_params}
    query_items = sorted(
        (k, v)
        for k, v in parse_qsl(parts.query, keep_blank_values=False)
        if k.lower() in keep and v
    )
    query = urlencode(query_items)

    return urlunsplit((scheme, netloc, path, query, ""))


def query_keys(url: str) -> List[str]:
    try:
        return [k.lower() for k, _ in parse_qsl(urlsplit(url).query, keep_blank_values=True)]
    except ValueError:
        return []


def resolve_url(href: str, base: str) -> Optional[str]:
    """urljoin that returns None instead of raising on malformed input."""
    try:
        absolute = urljoin(base, (href or "").strip())
        urlsplit(absolute)
    except ValueError:
        return None
    return absolute
