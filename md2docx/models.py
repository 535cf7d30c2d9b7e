"""
Data model shared by the forward (Markdown -> DOCX) and reverse
(DOCX -> Markdown) pipelines.

Block content uses the Pandoc-like dict encoding produced by
:class:`md2docx.marko_adapter.MarkoBlockParser`::

    {"t": "Header", "c": [level, [anchor, classes, attrs], inlines]}
    {"t": "Para", "c": inlines}
    {"t": "Table", "c": [aligns, header_cells, rows]}
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from .anchors import slugify


class LinkKind(str, Enum):
    INTERNAL = 'internal'
    EXTERNAL = 'external'
    ANCHOR = 'anchor'


@dataclass
class DocumentSection:
    title: str
    level: int
    content: str = ''
    id: str = ''
    children: List['DocumentSection'] = field(default_factory=list)

    def iter_sections(self):
        """Yield this section and all descendants in document order."""
        yield self
        for child in self.children:
            yield from child.iter_sections()


@dataclass
class TOCEntry:
    title: str
    level: int
    anchor: str
    page_number: Optional[int] = None
    children: List['TOCEntry'] = field(default_factory=list)


@dataclass
class TableOfContents:
    entries: List[TOCEntry] = field(default_factory=list)
    title: str = 'Table of Contents'
    include_page_numbers: bool = False

    def iter_entries(self):
        stack = list(reversed(self.entries))
        while stack:
            entry = stack.pop()
            yield entry
            stack.extend(reversed(entry.children))


@dataclass
class ProcessedDiagram:
    source_code: str
    image_bytes: bytes
    format: str
    width: int
    height: int
    id: str

    @property
    def dimensions(self) -> Dict[str, int]:
        return {'width': self.width, 'height': self.height}

    @property
    def file_name(self) -> str:
        return f'mermaid-{self.id}.png'

    @property
    def markdown_reference(self) -> str:
        return f'![Mermaid Diagram {self.id}]({self.file_name})'


@dataclass
class ProcessedLink:
    text: str
    url: str
    kind: LinkKind
    is_valid: bool
    rewritten_url: Optional[str] = None
    warning: Optional[str] = None

    @property
    def target(self) -> str:
        """URL the serializer should emit."""
        return self.rewritten_url or self.url

    @property
    def is_internal(self) -> bool:
        return self.kind in (LinkKind.INTERNAL, LinkKind.ANCHOR)


@dataclass
class ConversionMetadata:
    input_size: int = 0
    output_size: int = 0
    processing_time_ms: float = 0.0
    page_count: Optional[int] = None
    image_count: Optional[int] = None
    diagram_count: Optional[int] = None
    internal_link_count: Optional[int] = None
    external_link_count: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in self.__dict__.items() if v is not None}


@dataclass
class ConversionError:
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {'code': self.code, 'message': self.message}
        if self.details:
            data['details'] = self.details
        return data


@dataclass
class ConversionResult:
    success: bool
    output: Optional[Union[bytes, str]] = None
    metadata: Optional[ConversionMetadata] = None
    warnings: List[str] = field(default_factory=list)
    error: Optional[ConversionError] = None

    @classmethod
    def failure(cls, error: ConversionError, warnings=None) -> 'ConversionResult':
        return cls(success=False, error=error, warnings=list(warnings or []))

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly view; binary output is reported by size only."""
        data: Dict[str, Any] = {'success': self.success, 'warnings': list(self.warnings)}
        if isinstance(self.output, str):
            data['output'] = self.output
        if self.metadata is not None:
            data['metadata'] = self.metadata.to_dict()
        if self.error is not None:
            data['error'] = self.error.to_dict()
        return data


@dataclass
class ValidationIssue:
    code: str
    message: str
    line: Optional[int] = None


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)


@dataclass
class DocumentModel:
    blocks: List[dict] = field(default_factory=list)
    sections: List[DocumentSection] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def iter_sections(self):
        for section in self.sections:
            yield from section.iter_sections()


def plain_text(inlines) -> str:
    """Flatten a list of inline dicts into plain text."""
    if not isinstance(inlines, list):
        return ''
    text = []
    for item in inlines:
        t = item.get('t')
        c = item.get('c')
        if t == 'Str':
            text.append(c)
        elif t in ('Space', 'SoftBreak'):
            text.append(' ')
        elif t == 'LineBreak':
            text.append('\n')
        elif t in ('Strong', 'Emph', 'Underline', 'Strikeout', 'Span'):
            text.append(plain_text(c))
        elif t in ('Link', 'Image'):
            # c = [attr, [text], [url, title]]
            text.append(plain_text(c[1]))
        elif t == 'Code':
            text.append(c[1])
    return ''.join(text)


def block_text(block) -> str:
    """Plain text of a block, used for section content and statistics."""
    t = block.get('t')
    c = block.get('c')
    if t in ('Para', 'Plain'):
        return plain_text(c)
    if t == 'Header':
        return plain_text(c[2])
    if t == 'CodeBlock':
        return c[1]
    if t in ('BulletList', 'OrderedList'):
        items = c if t == 'BulletList' else c[1]
        return '\n'.join(
            '\n'.join(block_text(b) for b in item) for item in items
        )
    if t == 'BlockQuote':
        return '\n'.join(block_text(b) for b in c)
    if t == 'Table':
        _aligns, header, rows = c
        lines = [' '.join(plain_text(cell) for cell in header)]
        lines.extend(' '.join(plain_text(cell) for cell in row) for row in rows)
        return '\n'.join(lines)
    return ''


def _block_inline_lists(block):
    t = block.get('t')
    c = block.get('c')
    if t in ('Para', 'Plain'):
        yield c
    elif t == 'Header':
        yield c[2]
    elif t == 'Table':
        yield from c[1]
        for row in c[2]:
            yield from row


def _child_blocks(block):
    t = block.get('t')
    c = block.get('c')
    if t == 'BulletList':
        for item in c:
            yield from item
    elif t == 'OrderedList':
        for item in c[1]:
            yield from item
    elif t == 'BlockQuote':
        yield from c


def iter_blocks(blocks):
    """Yield every block depth-first, including list items and quotes."""
    for block in blocks:
        yield block
        yield from iter_blocks(list(_child_blocks(block)))


def iter_inlines(blocks):
    """Yield every inline dict in document order, descending into spans."""
    def walk(inlines):
        for item in inlines or []:
            yield item
            t = item.get('t')
            if t in ('Strong', 'Emph', 'Underline', 'Strikeout'):
                yield from walk(item['c'])
            elif t in ('Link', 'Image'):
                yield from walk(item['c'][1])

    for block in iter_blocks(blocks):
        for inlines in _block_inline_lists(block):
            yield from walk(inlines)


def build_section_tree(blocks) -> List[DocumentSection]:
    """Nest Header blocks into a DocumentSection tree.

    A section's children are the following headings with a strictly greater
    level, up to the next heading of equal or lower level. Section content is
    the plain text of the non-heading blocks directly under the heading.
    """
    roots: List[DocumentSection] = []
    stack: List[DocumentSection] = []
    content: Dict[int, List[str]] = {}

    for block in blocks:
        if block.get('t') != 'Header':
            if stack:
                text = block_text(block)
                if text:
                    content.setdefault(id(stack[-1]), []).append(text)
            continue

        level, attr, inlines = block['c']
        title = plain_text(inlines).strip()
        anchor = attr[0] if attr and attr[0] else slugify(title)
        section = DocumentSection(title=title, level=level, id=anchor)

        while stack and stack[-1].level >= level:
            stack.pop()
        if stack:
            stack[-1].children.append(section)
        else:
            roots.append(section)
        stack.append(section)

    for root in roots:
        for section in root.iter_sections():
            section.content = '\n\n'.join(content.get(id(section), []))
    return roots
