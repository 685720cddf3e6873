"""
Normalization of alias labels that arrive already rendered.
"""
import re
from typing import Optional

from .constants import OP_LABEL

_NUMBERED_RE = re.compile(r"(?:User\s*)?#?\s*(\d+)", re.IGNORECASE)


def normalize_label(raw: Optional[str]) -> Optional[str]:
    """``"op"`` becomes ``"OP"``, ``"User #3"`` becomes ``"3"``; anything else is None."""
    if not raw:
        return None
    text = raw.strip()
    if text.upper() == OP_LABEL:
        return OP_LABEL
    m = _NUMBERED_RE.search(text)
    return m.group(1) if m else None
