import re
from typing import List

URL_PATTERN = re.compile(r"https?://[^\s]+")


def extract_urls(content: str) -> List[str]:
    """Return every http(s) token in ``content`` in order of appearance.

    Tokens run until the next whitespace character. Duplicates are kept and
    no further validation is done beyond the scheme prefix.
    """
    if not content:
        return []
    return URL_PATTERN.findall(content)
