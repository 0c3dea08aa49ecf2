"""Gmail base64url decoding, including repair of link-tracker URL encoding."""

import base64
import binascii
import logging
import re

logger = logging.getLogger(__name__)

# Dash-escaped URL characters some link trackers leave in message bodies,
# e.g. "http-3A-2F-2Fexample.com" for "http://example.com".
_DASH_ESCAPES: dict[str, str] = {
    "-2F": "/",
    "-2B": "+",
    "-3D": "=",
    "-26": "&",
    "-3A": ":",
    "-3F": "?",
    "-23": "#",
}

_DASH_ESCAPE_RE = re.compile("|".join(re.escape(token) for token in _DASH_ESCAPES))
_PERCENT_RUN_RE = re.compile(r"(?:%[0-9A-Fa-f]{2})+")

# Encode in multiples of 3 bytes so chunk outputs concatenate without padding.
_ENCODE_CHUNK_BYTES = 3 * 16 * 1024


def b64url_decode(data: str) -> bytes:
    """Decode Gmail's unpadded base64url into raw bytes.

    Raises:
        binascii.Error: if the input is not valid base64 after padding.
    """
    standard = data.replace("-", "+").replace("_", "/")
    standard += "=" * (-len(standard) % 4)
    return base64.b64decode(standard)


def b64url_encode(data: bytes) -> str:
    """Encode bytes as unpadded base64url, working through the input in chunks."""
    chunks = [
        base64.b64encode(data[i:i + _ENCODE_CHUNK_BYTES]).decode("ascii")
        for i in range(0, len(data), _ENCODE_CHUNK_BYTES)
    ]
    return "".join(chunks).replace("+", "-").replace("/", "_").rstrip("=")


def decode_body(encoded: str) -> str:
    """Decode a base64url message body part into text. Never raises.

    Returns an empty string when the payload cannot be decoded; losing one
    body is preferable to failing a whole sync page.
    """
    if not encoded or not isinstance(encoded, str):
        return ""
    try:
        text = b64url_decode(encoded).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError) as exc:
        logger.debug("base64url body decode failed: %s", exc)
        return ""
    return repair_url_encoding(text)


def repair_url_encoding(text: str) -> str:
    """Undo tracker double-encoding: ``-XX`` dash escapes, then valid ``%XX`` runs.

    Valid UTF-8 inside a ``%XX`` run is decoded and any escape that cannot
    start a valid sequence is kept literally, so one bad escape or a stray
    ``%`` in prose (``50% off``) never breaks the rest of the body. Text
    without either marker is returned unchanged.
    """
    if "%" not in text and _DASH_ESCAPE_RE.search(text) is None:
        return text
    try:
        repaired = _DASH_ESCAPE_RE.sub(lambda m: _DASH_ESCAPES[m.group(0)], text)
        return _PERCENT_RUN_RE.sub(_decode_percent_run, repaired)
    except Exception as exc:  # noqa: BLE001
        logger.debug("URL-encoding repair aborted: %s", exc)
        return text


def _decode_percent_run(match: re.Match[str]) -> str:
    """Decode a ``%XX`` run one UTF-8 sequence at a time; bad escapes stay literal."""
    run = match.group(0)
    data = bytes.fromhex(run.replace("%", ""))
    out: list[str] = []
    start = 0
    while start < len(data):
        # A UTF-8 sequence is at most four bytes.
        for end in range(min(start + 4, len(data)), start, -1):
            try:
                out.append(data[start:end].decode("utf-8"))
            except UnicodeDecodeError:
                continue
            start = end
            break
        else:
            out.append(run[3 * start:3 * start + 3])
            start += 1
    return "".join(out)
