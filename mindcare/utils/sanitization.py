import html
from typing import Optional


def sanitize_string(value: Optional[str]) -> Optional[str]:
    """
    Sanitize a string by escaping HTML special characters to prevent XSS.
    Returns None if input is None.
    """
    if value is None:
        return None
    if not isinstance(value, str):
        return value
    return html.escape(value.strip(), quote=True)


def sanitize_list(values: Optional[list[str]]) -> list[str]:
    """
    Sanitize a list of free-text tags (certifications, languages).
    Blank entries are dropped and duplicates removed, keeping first occurrence order.
    """
    if not values:
        return []

    seen = set()
    result = []
    for value in values:
        if not isinstance(value, str) or not value.strip():
            continue
        cleaned = sanitize_string(value)
        key = cleaned.lower()
        if key in seen:
            continue
        seen.add(key)
        result.append(cleaned)
    return result
