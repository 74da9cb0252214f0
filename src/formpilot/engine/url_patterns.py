"""URL generalization and glob-style matching for manual lookup.

Example:
    https://acme.myworkdayjobs.com/en-US/careers/job/NYC/apply
    -> *.myworkdayjobs.com/*/careers/job/*/apply

'*' stands for exactly one subdomain label or path segment.
"""

from __future__ import annotations

import re
from urllib.parse import urlparse

WILDCARD = "*"

_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-", re.IGNORECASE)
_NUMERIC_RE = re.compile(r"^\d+$")
_LOCALE_RE = re.compile(r"^[a-z]{2}([-_][A-Z]{2})?$")
# Office/location codes such as NYC, SF, LON.
_LOCATION_CODE_RE = re.compile(r"^[A-Z]{2,3}$")

_PLATFORM_PATTERNS: list[tuple[str, tuple[re.Pattern[str], ...]]] = [
    ("workday", (re.compile(r"\.myworkdayjobs\.com"), re.compile(r"\.wd\d\.myworkdaysite\.com"))),
    ("greenhouse", (re.compile(r"boards\.greenhouse\.io"), re.compile(r"job-boards\.greenhouse\.io"))),
    ("lever", (re.compile(r"jobs\.lever\.co"),)),
    ("icims", (re.compile(r"\.icims\.com"),)),
    ("taleo", (re.compile(r"\.taleo\.net"),)),
    ("smartrecruiters", (re.compile(r"jobs\.smartrecruiters\.com"),)),
    ("linkedin", (re.compile(r"linkedin\.com/jobs"),)),
]

GENERIC_PLATFORM = "other"


def _is_dynamic_segment(seg: str) -> bool:
    return bool(
        _UUID_RE.match(seg)
        or _NUMERIC_RE.match(seg)
        or _LOCALE_RE.match(seg)
        or _LOCATION_CODE_RE.match(seg)
    )


def url_to_pattern(url: str) -> str:
    """Generalize a concrete URL into a host+path glob pattern."""
    parsed = urlparse(url)
    hostname = parsed.hostname or ""
    host_parts = hostname.split(".")

    if len(host_parts) >= 3:
        host_pattern = f"{WILDCARD}." + ".".join(host_parts[-2:])
    else:
        host_pattern = hostname

    segments = [seg for seg in parsed.path.split("/") if seg]
    pattern_segments = [WILDCARD if _is_dynamic_segment(seg) else seg for seg in segments]

    return host_pattern + "/" + "/".join(pattern_segments)


def _pattern_to_regex(pattern: str) -> re.Pattern[str]:
    body = re.escape(pattern.rstrip("/")).replace(re.escape(WILDCARD), "[^/]+")
    return re.compile(f"^{body}$")


def url_matches_pattern(url: str, pattern: str) -> bool:
    """True if hostname+path of *url* fully matches the glob *pattern*.

    Unparseable URLs never match.
    """
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    if not parsed.hostname:
        return False

    target = parsed.hostname + parsed.path.rstrip("/")
    return _pattern_to_regex(pattern).fullmatch(target) is not None


def detect_platform(url: str) -> str:
    """Map a URL to a known ATS platform tag, or 'other'."""
    for platform, patterns in _PLATFORM_PATTERNS:
        if any(p.search(url) for p in patterns):
            return platform
    return GENERIC_PLATFORM


def extract_domain(url: str) -> str:
    """Registrable-ish domain: the last two hostname labels."""
    hostname = urlparse(url).hostname or url
    parts = hostname.split(".")
    return ".".join(parts[-2:]) if len(parts) >= 2 else hostname
