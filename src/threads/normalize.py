"""Address and subject normalization shared by aggregation and clustering."""

import re
from email.utils import getaddresses

# Reply/forward markers, including common localized forms (German, Nordic,
# Finnish) and the "[external]" tag corporate gateways prepend.
SUBJECT_PREFIXES: tuple[str, ...] = ("re:", "fwd:", "fw:", "aw:", "sv:", "vs:", "[external]")

_ANGLE_ADDR_RE = re.compile(r"<([^>]+)>")
_TRAILING_TAG_RE = re.compile(r"\[[^\]]*\]$")
_TRAILING_PAREN_RE = re.compile(r"\([^)]*\)$")
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_address(address: str) -> str:
    """Extract the bare address from ``"Name <addr>"``, lower-cased and trimmed."""
    if not address:
        return ""
    match = _ANGLE_ADDR_RE.search(address)
    bare = match.group(1) if match else address
    return bare.strip().lower()


def email_domain(address: str) -> str:
    normalized = normalize_address(address)
    _, at, domain = normalized.rpartition("@")
    return domain if at else ""


def split_addresses(header: str) -> list[str]:
    """Split a To/From header into individual addresses (quoted commas respected)."""
    if not header:
        return []
    result: list[str] = []
    for name, addr in getaddresses([header]):
        if addr:
            result.append(addr)
        elif name:
            result.append(name)
    return result


def normalize_subject(subject: str) -> str:
    """Lower-case, drop one reply/forward prefix and a trailing tag, collapse spaces."""
    if not subject:
        return ""
    normalized = subject.lower().strip()
    for prefix in SUBJECT_PREFIXES:
        if normalized.startswith(prefix):
            normalized = normalized[len(prefix):].strip()
            break
    normalized = _TRAILING_TAG_RE.sub("", normalized)
    normalized = _TRAILING_PAREN_RE.sub("", normalized)
    return _WHITESPACE_RE.sub(" ", normalized).strip()
