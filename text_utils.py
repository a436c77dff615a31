"""
Text utilities for summaries, cultures, genres, and filenames.

Handles HTML summaries from TVMaze and the small string conventions the
Heartcore content model expects.
"""

import posixpath
import unicodedata
from typing import List, Optional, Sequence, Tuple
from urllib.parse import urlparse, unquote

from bs4 import BeautifulSoup

from constants import DEFAULT_CULTURES


# =============================================================================
# Summaries
# =============================================================================

def summary_to_text(summary: Optional[str]) -> str:
    """
    Convert a TVMaze HTML summary to plain text.

    - Strip HTML tags (paragraphs become line breaks)
    - Decode HTML entities
    - Remove control characters
    - Normalize whitespace (but preserve paragraph breaks)

    Args:
        summary: Raw summary, e.g. "<p><b>Under the Dome</b> is ...</p>"

    Returns:
        Plain text summary, "" for empty input
    """
    if not summary:
        return ""

    soup = BeautifulSoup(summary, "html.parser")
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for paragraph in soup.find_all("p"):
        paragraph.append("\n")
    text = soup.get_text()

    text = ''.join(
        c for c in text
        if c in '\n\t' or unicodedata.category(c)[0] != 'C'
    )

    lines = [' '.join(line.split()) for line in text.split('\n')]
    return '\n'.join(line for line in lines if line).strip()


# =============================================================================
# Cultures
# =============================================================================

def parse_cultures(raw: Optional[str]) -> Tuple[str, ...]:
    """
    Parse a ';'-separated culture list such as "en-US;da".

    Empty entries are dropped, duplicates keep their first position.
    Falls back to the default culture list when nothing is left.
    """
    if not raw:
        return tuple(DEFAULT_CULTURES)

    seen = set()
    cultures: List[str] = []
    for part in raw.split(';'):
        culture = part.strip()
        if culture and culture.lower() not in seen:
            seen.add(culture.lower())
            cultures.append(culture)

    return tuple(cultures) or tuple(DEFAULT_CULTURES)


def culture_language(culture: str) -> str:
    """"da-DK" -> "da", "en" -> "en"."""
    return culture.split('-')[0].split('_')[0].lower()


# =============================================================================
# Genres & Files
# =============================================================================

def join_genres(genres: Sequence[str]) -> Optional[str]:
    """Comma-joined tag string, or None when there are no genres."""
    cleaned = [g.strip() for g in genres if g and g.strip()]
    if not cleaned:
        return None
    return ",".join(cleaned)


def filename_from_url(url: str, default: str = "poster.jpg") -> str:
    """
    Get the file name from the path of a URL.

    "https://static.tvmaze.com/uploads/images/medium_portrait/81/202627.jpg"
    -> "202627.jpg"
    """
    name = posixpath.basename(unquote(urlparse(url).path))
    return name or default


def replace_extension(filename: str, extension: str) -> str:
    """Swap the extension of a file name, adding one if missing."""
    stem, _ = posixpath.splitext(filename)
    return f"{stem or 'poster'}.{extension.lstrip('.')}"
