"""
Forward pipeline front half: Markdown text -> DocumentModel.

Diagrams are rendered first (their fences become image references), then
the text is parsed, links are classified and headings get their anchors.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .anchors import slugify
from .config import DEFAULT_CONFIG
from .context import ConversionContext
from .link_resolver import LinkResolver
from .marko_adapter import MarkoBlockParser
from .models import (
    DocumentModel,
    ProcessedDiagram,
    ProcessedLink,
    build_section_tree,
    iter_blocks,
    iter_inlines,
    plain_text,
)

logger = logging.getLogger('md2docx')


@dataclass
class BuildResult:
    model: DocumentModel
    diagrams: List[ProcessedDiagram] = field(default_factory=list)
    links: List[ProcessedLink] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


class DocumentModelBuilder:
    """Build a DocumentModel from Markdown.

    Args:
        renderer: DiagramRenderer, or None to leave Mermaid fences as code
        link_resolver: LinkResolver instance
        parser: Markdown block parser
        context: ConversionContext shared with the rest of the call
    """

    def __init__(self, renderer=None, link_resolver=None, parser=None, context=None, config=None):
        self.config = config if config is not None else DEFAULT_CONFIG
        self.renderer = renderer
        self.link_resolver = link_resolver or LinkResolver()
        self.parser = parser or MarkoBlockParser()
        self.context = context or ConversionContext(config=self.config)

    def build(self, text: str, metadata: Optional[dict] = None) -> BuildResult:
        """Build the document model.

        Per-element problems (a diagram that fails to render, a malformed
        link) become warnings; the rest of the document is still built.
        """
        text = text.replace('\r\n', '\n')
        warnings: List[str] = []
        diagrams: List[ProcessedDiagram] = []

        if self.renderer is not None:
            with self.context.stage('diagrams'):
                rendered = self.renderer.process_content(text)
            text = rendered.content
            diagrams = rendered.diagrams
            warnings.extend(rendered.warnings)

        with self.context.stage('parse'):
            blocks = self.parser.parse(text)

        anchors = self._assign_heading_ids(blocks)
        links = self._resolve_links(blocks, anchors, warnings)
        sections = build_section_tree(blocks)

        logger.debug(
            "Built model: %d blocks, %d headings, %d links, %d diagrams",
            len(blocks), len(anchors), len(links), len(diagrams),
        )
        model = DocumentModel(blocks=blocks, sections=sections, metadata=dict(metadata or {}))
        return BuildResult(model=model, diagrams=diagrams, links=links, warnings=warnings)

    @staticmethod
    def _assign_heading_ids(blocks):
        anchors = set()
        for block in iter_blocks(blocks):
            if block.get('t') != 'Header':
                continue
            level, attr, inlines = block['c']
            anchor = slugify(plain_text(inlines))
            block['c'] = [level, [anchor, attr[1], attr[2]], inlines]
            if anchor:
                anchors.add(anchor)
        return anchors

    def _resolve_links(self, blocks, anchors, warnings):
        """Classify every Link inline and store the result on the inline.

        The inline's classes carry the link kind (plus ``invalid``), its
        target carries the rewritten URL, and the original URL is kept
        as an ``href`` attribute.
        """
        links = []
        for inline in iter_inlines(blocks):
            if inline.get('t') != 'Link':
                continue
            _attr, text_inlines, (url, title) = inline['c']
            link = self.link_resolver.resolve(plain_text(text_inlines), url, anchors)
            links.append(link)
            if link.warning:
                warnings.append(link.warning)
                logger.warning("%s", link.warning)

            classes = [link.kind.value]
            if not link.is_valid:
                classes.append('invalid')
            inline['c'] = [["", classes, [["href", url]]], text_inlines, [link.target, title]]
        return links
