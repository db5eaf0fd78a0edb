"""
Snippet extraction for search results.

A pure function of (content, query): no index engine call involved.
"""

from __future__ import annotations

from typing import Optional

SNIPPET_THRESHOLD = 150
CONTEXT_BEFORE = 50
CONTEXT_AFTER = 100
ELLIPSIS = "..."


def extract_snippet(content: Optional[str], query: Optional[str]) -> str:
    """
    Return a bounded excerpt of `content` around the first occurrence of
    `query`.

    - blank query: the full content
    - content of at most 150 characters: the full content
    - query not found: the first 150 characters followed by "..."
    - query found at i: content[max(0, i-50) : min(len, i+len(query)+100)],
      with "..." prepended when the window does not start at 0 and appended
      when it stops before the end
    """
    if query is None or not query.strip():
        return content or ""

    if content is None or len(content) <= SNIPPET_THRESHOLD:
        return content or ""

    index = content.lower().find(query.lower())
    if index < 0:
        return content[:SNIPPET_THRESHOLD] + ELLIPSIS

    start = max(0, index - CONTEXT_BEFORE)
    end = min(len(content), index + len(query) + CONTEXT_AFTER)

    snippet = content[start:end]
    if start > 0:
        snippet = ELLIPSIS + snippet
    if end < len(content):
        snippet = snippet + ELLIPSIS
    return snippet
