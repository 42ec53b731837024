import math
import re
from typing import Optional, Union

_CLOCK_RE = re.compile(r"^(?:(\d+):)?(\d{1,2}):(\d{2})(?:[.,](\d+))?$")


def format_timestamp(seconds: Union[float, int, str, None]) -> str:
    """Format seconds as M:SS, or H:MM:SS from one hour on. Strings pass through."""
    if seconds is None:
        return "0:00"
    if isinstance(seconds, str):
        return seconds
    if math.isnan(seconds) or seconds < 0:
        seconds = 0
    total = int(seconds)
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def parse_timestamp(value: str) -> Optional[float]:
    """Parse `H:MM:SS`, `MM:SS` (optionally with fractional seconds) into seconds."""
    m = _CLOCK_RE.match((value or "").strip())
    if not m:
        return None
    hours = int(m.group(1) or 0)
    minutes = int(m.group(2))
    secs = int(m.group(3))
    fraction = float(f"0.{m.group(4)}") if m.group(4) else 0.0
    return hours * 3600 + minutes * 60 + secs + fraction
