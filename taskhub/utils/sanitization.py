import re

_TAG_RE = re.compile(r"<[^>]*>")
_HEX_COLOR_RE = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{4}|[0-9a-fA-F]{6}|[0-9a-fA-F]{8})$")


def sanitize_string(v):
    if not isinstance(v, str):
        return v
    # Strip HTML tags, then surrounding whitespace
    return _TAG_RE.sub("", v).strip()


def validate_color(v):
    if v is None:
        return v
    v = sanitize_string(v)
    if not _HEX_COLOR_RE.match(v):
        raise ValueError("Color must be a hex value such as #3b82f6")
    return v
