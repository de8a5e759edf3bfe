# src/parsers/text_normalizer.py

import re
from typing import List, Optional
from bs4 import BeautifulSoup

_WS_RE          = re.compile(r"\s+")


def collapse(text: Optional[str]) -> str:
    return _WS_RE.sub(" ", text or "").strip()


def strip_html_to_text(html: Optional[str], collapse_whitespace: bool = False) -> str:
    """
    Document text with <script>/<style> bodies dropped and entities decoded,
    a space between the text of neighbouring tags.
    Never raises; None or garbage gives "".
    """
    soup = load_html(str(html or ""))
    for tag in soup(["script", "style"]):
        tag.decompose()
    text = soup.get_text(" ")
    return collapse(text) if collapse_whitespace else text


def normalize_whitespace_lines(text: Optional[str]) -> List[str]:
    """Split on newlines, collapse runs of whitespace, trim, drop empty lines."""
    lines = []
    for raw in str(text or "").split("\n"):
        line = collapse(raw)
        if line:
            lines.append(line)
    return lines


def load_html(html: Optional[str]) -> BeautifulSoup:
    """Document tree for the section walkers; html.parser tolerates broken vendor markup."""
    return BeautifulSoup(html or "", "html.parser")


def node_text(node) -> str:
    """Collapsed text of a bs4 node, "" for None."""
    if node is None:
        return ""
    return collapse(node.get_text(" "))
