"""Terminal-output cleanup for captured worker logs."""

from __future__ import annotations

import re

MAX_OUTPUT_CHARS = 50_000

_ANSI_RE = re.compile(
    r"""
    \x1b\][^\x07\x1b]*(?:\x07|\x1b\\)?   # OSC (window title etc.), BEL or ST terminated
    | \x1b[P^_][^\x1b]*(?:\x1b\\)?        # DCS / PM / APC strings
    | \x1b\[[0-?]*[ -/]*[@-~]             # CSI: cursor movement, colour, erase
    | \x9b[0-?]*[ -/]*[@-~]               # 8-bit CSI
    | \x1b[()*+\-./][ -~]                 # character-set selection
    | \x1b[ -/]*[0-~]                     # remaining two-byte escapes (ESC =, ESC 7, ...)
    | \x1b                                # lone ESC left by a truncated sequence
    """,
    re.VERBOSE,
)
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")


def sanitize(raw: str) -> str:
    """Strip ANSI/VT escape sequences, carriage returns and stray control bytes.

    Newlines and tabs are kept; everything else below 0x20 is dropped.
    """
    if not raw:
        return ""
    text = _ANSI_RE.sub("", raw)
    return _CONTROL_RE.sub("", text)


def truncate_tail(text: str, max_len: int = MAX_OUTPUT_CHARS) -> str:
    """Keep the last ``max_len`` characters of ``text``."""
    if max_len <= 0:
        return ""
    if len(text) <= max_len:
        return text
    return text[-max_len:]
