"""Recover a bare SQL statement from model output."""

import re

FENCE = "```"

# Opening fence with an optional dialect tag: ```sql, ```duckdb, ``` ...
_OPENING_FENCE_RE = re.compile(
    r"^```(?:duckdb|postgresql|postgres|sqlite|psql|sql)?\b\s*|^```\s*",
    re.IGNORECASE,
)
_CLOSING_FENCE_RE = re.compile(r"\s*```$")


def extract_sql(raw_text: str) -> str:
    """Strip code-fence markers and surrounding whitespace from model output.

    Only fences at the very start and at the very end are removed;
    the statement between them is returned unchanged. Applying this twice
    gives the same result as applying it once.

    Examples:
        >>> extract_sql("```sql\\nSELECT 1\\n```")
        'SELECT 1'
        >>> extract_sql("  SELECT 1  ")
        'SELECT 1'
    """
    text = raw_text.strip()
    previous = None
    # Repeat until stable so stacked fences (``````) cannot survive one pass
    while text != previous:
        previous = text
        text = _OPENING_FENCE_RE.sub("", text, count=1)
        text = _CLOSING_FENCE_RE.sub("", text, count=1)
        text = text.strip()
    return text
