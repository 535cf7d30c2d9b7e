"""
Link classification and rewriting.

:class:`LinkResolver` is pure: resolving the same URL twice, or resolving
a URL it already rewrote, gives the same kind, validity and target.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from typing import Dict, Iterable, List, Optional
from urllib.parse import urlsplit

from .anchors import slugify
from .models import DocumentSection, LinkKind, ProcessedLink, TOCEntry, TableOfContents

logger = logging.getLogger('md2docx')


class LinkResolver:
    """Classify link targets as anchors, external URLs or document references."""

    # Scheme words that must be followed by "://"
    SCHEME_WORD_RE = re.compile(r'^(?:https?|ftps?|file|wss?)(?=$|[.:/\\])', re.IGNORECASE)
    OPAQUE_SCHEMES = ('mailto:', 'tel:')
    MARKDOWN_EXTENSIONS = ('.md', '.markdown')

    REFERENCE_DEF_RE = re.compile(r'^\s*\[([^\]]+)\]:\s*(\S+)(?:\s+"([^"]*)")?', re.MULTILINE)

    def resolve(self, text: str, url: str, known_anchors: Optional[Iterable[str]] = None) -> ProcessedLink:
        """Classify ``url`` and compute its rewritten target.

        Args:
            text: Link text, kept for reporting
            url: Link destination as written
            known_anchors: Heading anchors present in the document. When
                given, anchor links to other fragments are marked invalid.

        Returns:
            ProcessedLink
        """
        url = (url or '').strip()

        if url.startswith('#'):
            return self._resolve_anchor(text, url, known_anchors)

        if '://' in url:
            parts = urlsplit(url)
            valid = bool(parts.scheme) and bool(parts.netloc)
            warning = None if valid else f"Malformed URL: {url}"
            return ProcessedLink(text, url, LinkKind.EXTERNAL, valid, warning=warning)

        if url.lower().startswith(self.OPAQUE_SCHEMES):
            valid = len(url.split(':', 1)[1]) > 0
            warning = None if valid else f"Malformed URL: {url}"
            return ProcessedLink(text, url, LinkKind.EXTERNAL, valid, warning=warning)

        if self.SCHEME_WORD_RE.match(url):
            return ProcessedLink(text, url, LinkKind.EXTERNAL, False, warning=f"Malformed URL: {url}")

        return self._resolve_internal(text, url)

    def _resolve_anchor(self, text, url, known_anchors):
        anchor = slugify(url[1:])
        valid = bool(anchor)
        warning = None
        if not valid:
            warning = f"Empty anchor link: {url}"
        elif known_anchors is not None and anchor not in known_anchors:
            valid = False
            warning = f"Anchor not found in document: {url}"
        return ProcessedLink(text, url, LinkKind.ANCHOR, valid, rewritten_url=f'#{anchor}', warning=warning)

    def _resolve_internal(self, text, url):
        path, _, fragment = url.partition('#')
        if not path and not fragment:
            return ProcessedLink(text, url, LinkKind.INTERNAL, False, warning="Empty link target")

        root, dot, ext = path.rpartition('.')
        if dot and f'.{ext.lower()}' in self.MARKDOWN_EXTENSIONS:
            path = f'{root}.docx'
        rewritten = path
        if fragment:
            rewritten = f'{path}#{slugify(fragment)}'
        return ProcessedLink(text, url, LinkKind.INTERNAL, True, rewritten_url=rewritten)

    def resolve_all(self, links, known_anchors=None) -> List[ProcessedLink]:
        """Resolve ``(text, url)`` pairs in order."""
        return [self.resolve(text, url, known_anchors) for text, url in links]

    @classmethod
    def extract_reference_definitions(cls, content: str) -> Dict[str, Dict[str, Optional[str]]]:
        """Collect ``[ref]: url "title"`` definitions keyed by lowercased label."""
        refs = {}
        for match in cls.REFERENCE_DEF_RE.finditer(content):
            label, url, title = match.groups()
            refs[label.lower()] = {'url': url.strip(), 'title': title.strip() if title else None}
        return refs


def _toc_entry(section: DocumentSection) -> TOCEntry:
    return TOCEntry(
        title=section.title,
        level=section.level,
        anchor=section.id or slugify(section.title),
        children=[_toc_entry(child) for child in section.children],
    )


def generate_table_of_contents(sections: List[DocumentSection], title='Table of Contents',
                               include_page_numbers=False) -> TableOfContents:
    """Mirror the section tree as a table of contents.

    Entry anchors are the section ids, so each TOC entry links to the
    bookmark of the heading it represents.
    """
    toc = TableOfContents(
        entries=[_toc_entry(section) for section in sections],
        title=title,
        include_page_numbers=include_page_numbers,
    )
    logger.debug("Generated table of contents with %d entries", sum(1 for _ in toc.iter_entries()))
    return toc


def toc_markdown(toc: TableOfContents) -> str:
    """Render a table of contents as a nested Markdown list."""
    lines = [f'# {toc.title}', '']
    for entry in toc.iter_entries():
        indent = '  ' * (entry.level - 1)
        lines.append(f'{indent}- [{entry.title}](#{entry.anchor})')
    return '\n'.join(lines)


def link_statistics(links: Iterable[ProcessedLink]) -> dict:
    """Count links in total, per kind, and by validity."""
    links = list(links)
    by_kind = Counter(link.kind.value for link in links)
    valid = sum(1 for link in links if link.is_valid)
    return {
        'total': len(links),
        'by_kind': dict(by_kind),
        'valid': valid,
        'invalid': len(links) - valid,
    }
