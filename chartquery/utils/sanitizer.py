# chartquery/utils/sanitizer.py
"""
Text cleanup shared by the request layer and the agent-output validators.
"""

import re

_RE_CONTROL = re.compile(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]')
_RE_WHITESPACE = re.compile(r'\s+')

# ```sql ... ``` wrappers that language models like to add around answers
_RE_FENCE = re.compile(r'```(?:sql|json)?', flags=re.IGNORECASE)

# Maximum acceptable length for a single question (tunable)
DEFAULT_MAX_LENGTH = 500


def clean_input(raw: str) -> str:
    """
    Clean a user question:
      - remove control characters
      - collapse runs of whitespace into a single space
      - strip leading/trailing whitespace
    """
    if raw is None:
        return ''
    s = _RE_CONTROL.sub('', str(raw))
    return _RE_WHITESPACE.sub(' ', s).strip()


def is_too_long(s: str, max_len: int = DEFAULT_MAX_LENGTH) -> bool:
    """Return True if the string is longer than max_len."""
    return len(s) > max_len


def strip_code_fences(text: str) -> str:
    """Remove markdown code fence markers and surrounding whitespace."""
    if not text:
        return ''
    return _RE_FENCE.sub('', text).strip()
