from typing import List, Optional, Tuple
import re

DEFAULT_MARKER = "SUGGESTIONS:"

_BLOCK_PATTERN = re.compile(r"<suggestions>(.*?)</suggestions>", re.IGNORECASE | re.DOTALL)
_BULLET_PREFIX = re.compile(r"^(?:[-*•]|\d+\.|\[\d+\])\s*")


def _marker_pattern(marker: str) -> re.Pattern:
    # Accepts "SUGGESTIONS:", "**Suggestions:**" and "## Suggestions" headings
    word = re.escape(marker.rstrip(":").strip())
    return re.compile(
        r"(?:^|\n)(?:#{1,6}\s*)?(?:\*\*)?" + word + r":?(?:\*\*)?\s*(.*)$",
        re.IGNORECASE | re.DOTALL,
    )


def parse_bulleted_list(text: str, lenient: bool = False) -> List[str]:
    """Strip bullet prefixes from list lines; strict mode requires a bullet"""
    items = []
    for line in text.split("\n"):
        line = line.strip()
        if not line or line.startswith("```"):
            continue
        if not lenient and not _BULLET_PREFIX.match(line):
            continue
        item = _BULLET_PREFIX.sub("", line, count=1).strip()
        if item:
            items.append(item)
    return items


def parse_suggestions(content: str, marker: str = DEFAULT_MARKER) -> Tuple[str, Optional[List[str]]]:
    """Split final content into display content and follow-up suggestions"""
    block = _BLOCK_PATTERN.search(content)
    if block:
        suggestions = parse_bulleted_list(block.group(1), lenient=True)
        display = _BLOCK_PATTERN.sub("", content, count=1).strip()
        return display, suggestions or None

    match = _marker_pattern(marker).search(content)
    if match:
        suggestions = parse_bulleted_list(match.group(1))
        if suggestions:
            return content[:match.start()].strip(), suggestions

    return content, None
