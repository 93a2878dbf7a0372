import logging
import re
import sys
from typing import Optional
from urllib.parse import quote

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# control characters, quotes and backslashes break the Content-Disposition header
_UNSAFE_FILENAME_CHARS = re.compile(r'[\x00-\x1f\x7f"\\]')

_configured = False


def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger once, later calls only change the level."""
    global _configured
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    if _configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    _configured = True


def sanitize_filename(filename: Optional[str]) -> Optional[str]:
    """
    Reduce a client supplied name to a bare file name safe for a header value.

    Returns None when nothing usable is left.

    Example:
        >>> sanitize_filename('../../etc/pass"wd')
        'passwd'
    """
    if not filename:
        return None
    # drop any directory part, windows separators included
    name = re.split(r"[\\/]", filename)[-1]
    name = _UNSAFE_FILENAME_CHARS.sub("", name).strip()
    if name in ("", ".", ".."):
        return None
    return name


def content_disposition(filename: str) -> str:
    """
    Build an attachment Content-Disposition value.

    Non ASCII names get an ASCII fallback plus the RFC 5987 `filename*` parameter.
    """
    try:
        filename.encode("ascii")
    except UnicodeEncodeError:
        fallback = filename.encode("ascii", "replace").decode("ascii")
        return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"
    return f'attachment; filename="{filename}"'
