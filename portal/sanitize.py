"""
Input sanitization applied to request bodies before validation.

  - Strings: <script>/<style> blocks are removed with their content, every
    other HTML tag is stripped, surrounding whitespace is trimmed
  - Dict keys that look like query operators ("$where", "$gt", "a.b") are
    dropped along with their values
  - Dicts and lists are walked recursively; numbers, booleans and null
    pass through unchanged

The input is never mutated; a cleaned copy is returned.
"""

import re
from typing import Any

_BLOCK_RE = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_UNCLOSED_BLOCK_RE = re.compile(r"<(script|style)\b[^>]*>.*\Z", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"</?[a-zA-Z!][^>]*>")


def is_operator_key(key: str) -> bool:
    return key.startswith("$") or "." in key


def clean_string(value: str) -> str:
    value = _BLOCK_RE.sub("", value)
    value = _UNCLOSED_BLOCK_RE.sub("", value)
    value = _TAG_RE.sub("", value)
    return value.strip()


def sanitize(value: Any) -> Any:
    if isinstance(value, str):
        return clean_string(value)
    if isinstance(value, dict):
        return {
            key: sanitize(item)
            for key, item in value.items()
            if not (isinstance(key, str) and is_operator_key(key))
        }
    if isinstance(value, list):
        return [sanitize(item) for item in value]
    return value
