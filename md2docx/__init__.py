"""
md2docx - Convert between Markdown and DOCX (Office Open XML word documents)

Mermaid diagrams are rendered to images, links are classified and
rewritten, and one of several style templates is applied.
"""

__version__ = "0.1.0"

from .MarkdownToDocx import MarkdownToDocx
from .DocxToMarkdown import DocxToMarkdown
from .document_builder import BuildResult, DocumentModelBuilder
from .marko_adapter import MarkoBlockParser
from .markdown_writer import MarkdownWriter
from .mermaid_renderer import DiagramRenderer, KrokiBackend, MermaidCliBackend, RenderBackend
from .link_resolver import LinkResolver, generate_table_of_contents
from .anchors import slugify
from .frontmatter_parser import (
    parse_markdown_with_frontmatter,
    parse_markdown_string_with_frontmatter,
)
from .styles import get_template, merge_custom_styles, available_templates, available_mermaid_themes
from .options import DocxToMarkdownOptions, MarkdownToDocxOptions, OutputOptions, PageMargins
from .models import ConversionResult, DocumentModel, ProcessedDiagram, ProcessedLink, LinkKind
from .config import ConversionConfig, DEFAULT_CONFIG
from .exceptions import (
    DocxConversionError,
    DiagramRenderError,
    PackageStructureError,
    InvalidTemplateError,
    StyleError,
    SecurityError,
)
from .converter_api import MarkdownDocxConverter, convert_string

__all__ = [
    "MarkdownToDocx",
    "DocxToMarkdown",
    "BuildResult",
    "DocumentModelBuilder",
    "MarkoBlockParser",
    "MarkdownWriter",
    "DiagramRenderer",
    "KrokiBackend",
    "MermaidCliBackend",
    "RenderBackend",
    "LinkResolver",
    "generate_table_of_contents",
    "slugify",
    "parse_markdown_with_frontmatter",
    "parse_markdown_string_with_frontmatter",
    "get_template",
    "merge_custom_styles",
    "available_templates",
    "available_mermaid_themes",
    "DocxToMarkdownOptions",
    "MarkdownToDocxOptions",
    "OutputOptions",
    "PageMargins",
    "ConversionResult",
    "DocumentModel",
    "ProcessedDiagram",
    "ProcessedLink",
    "LinkKind",
    "ConversionConfig",
    "DEFAULT_CONFIG",
    "DocxConversionError",
    "DiagramRenderError",
    "PackageStructureError",
    "InvalidTemplateError",
    "StyleError",
    "SecurityError",
    "MarkdownDocxConverter",
    "convert_string",
]
