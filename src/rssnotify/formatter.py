"""Rendering of feed items into Telegram MarkdownV2 messages.

Item bodies arrive as HTML. html2text first converts them to an intermediate
markdown (``**bold**``, ``*italic*``, ``[text](url)``), which is then escaped
for MarkdownV2 and run through a fixed sequence of regex passes that restore
structure: section headings, emphasis, footers.
"""

import logging
import re
from dataclasses import dataclass

from html2text import HTML2Text

from rssnotify.models import Item

logger = logging.getLogger(__name__)

DOI_URL = "https://doi.org/"
PUBMED_URL = "https://pubmed.ncbi.nlm.nih.gov/"
QXMD_URL = "https://qxmd.com/r/"

ABSTRACT_MARKER = "**ABSTRACT**"
IDENTIFIER_MARKER = "PMID:["

_MARKDOWN_V2_SPECIAL_RE = re.compile(r"([_*\[\]()~`>#+\-=|{}.!\\<])")
# html2text backslash-escapes literal markdown characters in text, so an
# unescaped "*" in its output is always bold or italic markup.
_CONVERTED_TOKEN_RE = re.compile(
    r"\\([\\`*_{}\[\]()#+\-.!])|(\*)|([_\[\]()~`>#+\-=|{}.!\\<])"
)
_LINK_URL_SPECIAL_RE = re.compile(r"([)\\])")
_SPACE_AROUND_NEWLINE_RE = re.compile(r"[ \t]*\n[ \t]*")
_IDENTIFIER_SPLIT_RE = re.compile(r"[;\n]")

_ENTITY_REPLACEMENTS = {"lt": "\\<", "gt": "\\>", "amp": "&"}


class FormatError(Exception):
    """Raised when an item has nothing that can be rendered."""


@dataclass(frozen=True)
class PreparedMessage:
    """Pieces of a message, before MarkdownV2 composition."""

    title: str
    journal: str | None = None
    content: str | None = None
    pmid: str | None = None
    doi: str | None = None


class MarkupRules:
    """Compiled regular expressions for the abstract cleanup passes.

    Built once per Formatter. Every pass works on text that is already
    MarkdownV2-escaped, which is why literal periods show up as ``\\.`` in the
    patterns. Bold and italic markup stays unescaped (``**x**``, ``*x*``) until
    the emphasis pass renders it, and the heading passes emit the same markup.
    """

    SECTION_HEADINGS = (
        "Background",
        "Objective",
        "Purpose",
        "Materials and Methods",
        "Results",
        "Conclusion",
        "Clinical Impact",
        "Evidence Synthesis",
        "Evidence Acquisition",
    )

    def __init__(self, section_headings: tuple[str, ...] = SECTION_HEADINGS):
        logger.debug("Compiling markup rules")
        headings = "|".join(re.escape(h) for h in section_headings)
        self.entity_re = re.compile(r"&(lt|gt|amp);")
        self.underlined_keyword_re = re.compile(
            r"(?m)(^|\w|\\\.)\\_\\_([A-Za-z ]+?)(?::|\\\.)\\_\\_ ?(\w)"
        )
        self.section_heading_re = re.compile(
            rf"(?m)(^|\\\.) ?({headings})(?::|\\\.)? ?(?=[A-Z])"
        )
        self.caps_heading_re = re.compile(
            r"(?m)(^|\\\.) ?(?:\*\*)?([A-Z][A-Z ]*):(?:\*\*)? "
        )
        self.emphasis_re = re.compile(
            r"(\\.)|\*\*((?:\\.|[^*\\\n])+?)\*\*|\*((?:\\.|[^*\\\n])+?)\*"
        )
        self.copyright_re = re.compile(r"\s*©\s?RSNA.*", re.DOTALL)
        self.blank_lines_re = re.compile(r"\n{3,}")

    def unescape_entities(self, text: str) -> str:
        return self.entity_re.sub(lambda m: _ENTITY_REPLACEMENTS[m.group(1)], text)

    def strip_underlined_keywords(self, text: str) -> str:
        """``\\_\\_OBJECTIVE:\\_\\_To`` -> ``OBJECTIVE: To`` (AJR markup artifact)."""

        def repl(m: re.Match) -> str:
            prefix, keyword, following = m.groups()
            if prefix:
                return f"{prefix} {keyword}: {following}"
            return f"{keyword}: {following}"

        return self.underlined_keyword_re.sub(repl, text)

    def bold_section_headings(self, text: str) -> str:
        return self.section_heading_re.sub(
            lambda m: f"{m.group(1)}\n\n**{m.group(2).upper()}:** ", text
        )

    def bold_caps_headings(self, text: str) -> str:
        return self.caps_heading_re.sub(
            lambda m: f"{m.group(1)}\n\n**{m.group(2).strip()}:** ", text
        )

    def render_emphasis(self, text: str) -> str:
        def repl(m: re.Match) -> str:
            escaped, bold, emphasis = m.groups()
            if escaped is not None:
                return escaped
            if bold is not None:
                return f"*{bold}*"
            return italic(emphasis)

        return self.emphasis_re.sub(repl, text)

    def strip_copyright(self, text: str) -> str:
        return self.copyright_re.sub("", text, count=1)


class Formatter:
    """Turns feed items into MarkdownV2 message bodies.

    Output depends only on the item, so the same item always renders to the
    same bytes.
    """

    def __init__(self, rules: MarkupRules | None = None):
        self.rules = rules or MarkupRules()

    def render(self, item: Item) -> PreparedMessage:
        """Extract title, journal, abstract and identifiers from an item.

        Raises:
            FormatError: If the item has neither a title nor a body.
        """
        if not item.title and not item.content:
            raise FormatError(f"Item {item.guid} has no title and no content")

        title = html_to_markdown(item.title)
        journal = item.sources[0] if item.sources else None
        content = extract_abstract(html_to_markdown(item.content))
        if content is None:
            logger.debug("No abstract found in item %s", item.guid)
        pmid, doi = extract_identifiers(item.identifiers)

        return PreparedMessage(
            title=title,
            journal=journal,
            content=content,
            pmid=pmid,
            doi=doi,
        )

    def format(self, item: Item) -> str:
        """Render an item straight to a MarkdownV2 message."""
        return self.to_markdown_v2(self.render(item))

    def format_title(self, title: str) -> str:
        rules = self.rules
        text = escape_converted(title)
        text = rules.unescape_entities(text)
        return rules.render_emphasis(text)

    def format_abstract(self, content: str) -> str:
        """Escape an abstract and restore its structure.

        The passes run in a fixed order; later passes expect the output of
        the earlier ones.
        """
        rules = self.rules
        text = escape_converted(content)
        text = rules.unescape_entities(text)
        text = rules.strip_underlined_keywords(text)
        text = rules.bold_section_headings(text)
        text = rules.bold_caps_headings(text)
        text = rules.render_emphasis(text)
        text = rules.strip_copyright(text)
        return rules.blank_lines_re.sub("\n\n", text).strip()

    def to_markdown_v2(self, message: PreparedMessage) -> str:
        title = self.format_title(message.title)
        parts = [link(title, DOI_URL + message.doi) if message.doi else title]

        if message.journal:
            parts.append("\n" + italic(escape_markdown_v2(message.journal)))

        if message.content:
            abstract = self.format_abstract(message.content)
            if abstract:
                parts.append("\n\n" + abstract)

        if message.doi:
            footer = link("Link", DOI_URL + message.doi)
            if message.pmid:
                footer += " \\| " + link("PubMed", PUBMED_URL + message.pmid)
                footer += " \\| " + link("QxMD", QXMD_URL + message.pmid)
            parts.append("\n" + footer)

        result = "".join(parts)
        logger.debug("Formatted message:\n%s", result)
        return result


def escape_markdown_v2(text: str) -> str:
    """Backslash-escape every MarkdownV2 reserved character."""
    return _MARKDOWN_V2_SPECIAL_RE.sub(r"\\\1", text)


def escape_converted(text: str) -> str:
    """Escape html2text output for MarkdownV2, leaving its emphasis markup alone.

    Characters html2text has already backslash-escaped become MarkdownV2
    escapes of the same character.
    """

    def repl(m: re.Match) -> str:
        literal, marker, special = m.groups()
        if marker is not None:
            return marker
        return "\\" + (literal or special)

    return _CONVERTED_TOKEN_RE.sub(repl, text)


def escape_link_url(url: str) -> str:
    """Escape a URL for the ``(...)`` part of a MarkdownV2 link."""
    return _LINK_URL_SPECIAL_RE.sub(r"\\\1", url)


def link(text: str, url: str) -> str:
    """MarkdownV2 inline link; ``text`` must already be escaped."""
    return f"[{text}]({escape_link_url(url)})"


def italic(text: str) -> str:
    return f"_{text}_"


def _converter() -> HTML2Text:
    converter = HTML2Text()
    converter.body_width = 0
    converter.strong_mark = "**"
    converter.emphasis_mark = "*"
    converter.ul_item_mark = "-"
    converter.inline_links = True
    converter.escape_snob = True
    converter.unicode_snob = True
    return converter


def html_to_markdown(source: str | None) -> str:
    """Convert an HTML fragment to bold/italic/link markdown.

    Literal markdown characters in the text come back backslash-escaped.
    """
    if not source:
        return ""
    text = _converter().handle(source)
    text = _SPACE_AROUND_NEWLINE_RE.sub("\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def extract_abstract(markdown: str) -> str | None:
    """Return the text between the ABSTRACT marker and the PMID line, if both exist."""
    start = markdown.find(ABSTRACT_MARKER)
    end = markdown.find(IDENTIFIER_MARKER)
    if start < 0 or end < 0 or end < start:
        return None
    body = markdown[start + len(ABSTRACT_MARKER):end].strip()
    return body or None


def extract_identifiers(identifiers: str) -> tuple[str | None, str | None]:
    """Pick the PMID and DOI out of a ``;``- or newline-delimited identifier list."""
    pmid = doi = None
    for raw in _IDENTIFIER_SPLIT_RE.split(identifiers or ""):
        value = raw.strip()
        if value.startswith("pmid:"):
            pmid = value[len("pmid:"):].strip() or None
        elif value.startswith("doi:"):
            doi = value[len("doi:"):].strip() or None
    return pmid, doi
