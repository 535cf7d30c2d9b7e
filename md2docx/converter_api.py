"""
High-level convenience API for md2docx.

Wires the pipeline stages together for one conversion call and turns
every failure into a ``ConversionResult`` instead of an exception.
"""

import logging
import math
import os
import re
from dataclasses import dataclass, fields
from typing import Callable, List, Optional

from .DocxToMarkdown import DocxToMarkdown
from .MarkdownToDocx import MarkdownToDocx
from .anchors import slugify
from .config import DEFAULT_CONFIG
from .context import ConversionContext
from .document_builder import DocumentModelBuilder
from .exceptions import (
    BatchConversionError,
    DocxConversionError,
    FileConversionFailedError,
    MalformedLinkError,
)
from .file_utils import ensure_writable_dir, generate_unique_file_name, read_file, validate_file, write_file
from .frontmatter_parser import apply_metadata_to_options, parse_markdown_string_with_frontmatter
from .link_resolver import LinkResolver, link_statistics
from .marko_adapter import MarkoBlockParser
from .mermaid_renderer import MERMAID_FENCE_RE, DiagramRenderer, create_backend
from .models import (
    ConversionError,
    ConversionMetadata,
    ConversionResult,
    ValidationIssue,
    ValidationResult,
    block_text,
    iter_blocks,
    iter_inlines,
    plain_text,
)
from .options import (
    ConversionOptions,
    DocxToMarkdownOptions,
    MarkdownToDocxOptions,
)
from .styles import available_mermaid_themes, available_templates, get_template, validate_mermaid_theme

logger = logging.getLogger('md2docx')

MARKDOWN_EXTENSIONS = ('.md', '.markdown')
DOCX_EXTENSIONS = ('.docx',)
_MARKDOWN_EXT_RE = re.compile(r'\.(md|markdown)$', re.IGNORECASE)
_DOCX_EXT_RE = re.compile(r'\.docx$', re.IGNORECASE)
_MALFORMED_HTTP_RE = re.compile(r'\[[^\]]*\]\((http[^)\s]*)')


@dataclass
class BatchItem:
    input: str
    output: str
    result: ConversionResult


def _format_bytes(size):
    units = ['B', 'KB', 'MB', 'GB', 'TB']
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(units) - 1:
        value /= 1024
        unit += 1
    return f'{value:.2f} {units[unit]}'


def _word_count(blocks):
    return sum(
        len(block_text(b).split()) for b in iter_blocks(blocks)
        if b.get('t') not in ('BulletList', 'OrderedList', 'BlockQuote')
    )


class MarkdownDocxConverter:
    """Convert between Markdown and DOCX.

    Args:
        default_options: Option values (dict) applied to every call before
            the per-call options
        config: ConversionConfig instance
        backend_factory: ``factory(options, scratch_dir)`` returning a
            RenderBackend; defaults to the backend named by
            ``options.renderer_backend``
        retry_policy: RetryPolicy for diagram HTTP calls; the backend default
            when None
        cancel_check: Callable returning True when the caller wants to stop
    """

    def __init__(self, default_options=None, config=None, backend_factory=None, retry_policy=None,
                 cancel_check: Optional[Callable[[], bool]] = None):
        self.default_options = dict(default_options or {})
        self.config = config if config is not None else DEFAULT_CONFIG
        self.backend_factory = backend_factory
        self.retry_policy = retry_policy
        self.cancel_check = cancel_check

    # --- Helpers ---

    def _options(self, options_cls, options):
        if isinstance(options, options_cls):
            return options
        data = dict(self.default_options)
        if isinstance(options, ConversionOptions):
            data.update({f.name: getattr(options, f.name) for f in fields(options)})
        elif options:
            data.update(options)
        return options_cls.from_dict(data)

    def _new_context(self):
        return ConversionContext(config=self.config, cancel_check=self.cancel_check)

    def _create_renderer(self, options, context):
        renderer = DiagramRenderer(
            theme=options.mermaid_theme,
            timeout=options.diagram_timeout,
            max_workers=options.diagram_max_workers,
            output_options=options.output_options,
            context=context,
            config=self.config,
        )
        if self.backend_factory is not None:
            renderer.backend_factory = lambda: self.backend_factory(options, renderer.scratch_dir)
        else:
            renderer.backend_factory = lambda: create_backend(
                options.renderer_backend, renderer.scratch_dir, options.kroki_url, self.retry_policy,
            )
        return renderer

    @staticmethod
    def _failure(error, warnings=None, log_message=None):
        if log_message:
            logger.error("%s: %s", log_message, error.message)
        return ConversionResult.failure(error, warnings)

    # --- Markdown -> DOCX ---

    def markdown_to_docx(self, markdown_content, options=None):
        """Convert Markdown text to DOCX bytes.

        Returns:
            ConversionResult with ``output`` set to the package bytes
        """
        context = self._new_context()
        warnings: List[str] = []

        if not markdown_content or not markdown_content.strip():
            return self._failure(ConversionError('EMPTY_INPUT', 'Markdown content is empty'))

        try:
            options = self._options(MarkdownToDocxOptions, options)
            metadata, body = parse_markdown_string_with_frontmatter(markdown_content)
            options = apply_metadata_to_options(metadata, options)
            bundle = get_template(options.template)
            validate_mermaid_theme(options.mermaid_theme)

            builder = DocumentModelBuilder(
                renderer=self._create_renderer(options, context),
                context=context,
                config=self.config,
            )
            built = builder.build(body, metadata)
            warnings.extend(built.warnings)

            serializer = MarkdownToDocx(
                built.model, built.diagrams, built.links, bundle, options, self.config, context,
            )
            data = serializer.to_bytes()
            warnings.extend(serializer.warnings)
        except DocxConversionError as e:
            return self._failure(e.to_error(), warnings, "Markdown to DOCX conversion failed")
        except Exception as e:
            logger.error("Unexpected error converting Markdown to DOCX: %s", e, exc_info=True)
            return ConversionResult.failure(ConversionError('CONVERSION_FAILED', str(e)), warnings)

        meta = ConversionMetadata(
            input_size=len(markdown_content.encode('utf-8')),
            output_size=len(data),
            processing_time_ms=context.elapsed_ms(),
            **serializer.counters,
        )
        logger.info("Converted Markdown to DOCX in %.0f ms (%d warnings)", meta.processing_time_ms, len(warnings))
        return ConversionResult(success=True, output=data, metadata=meta, warnings=warnings)

    def markdown_file_to_docx(self, input_path, output_path, options=None):
        """Convert a Markdown file and write the DOCX to ``output_path``.

        Relative image paths resolve against the input file's directory
        unless ``base_dir`` is set.
        """
        logger.info("Converting %s -> %s", input_path, output_path)
        try:
            validation = validate_file(input_path, MARKDOWN_EXTENSIONS, self.config)
            if not validation.is_valid:
                raise FileConversionFailedError(
                    f"Invalid input file: {', '.join(e.message for e in validation.errors)}",
                    details={'input': input_path, 'output': output_path,
                             'errors': [e.code for e in validation.errors]},
                )
            for issue in validation.warnings:
                logger.warning("%s", issue.message)

            options = self._options(MarkdownToDocxOptions, options)
            if options.base_dir is None:
                options = options.merged(base_dir=os.path.dirname(os.path.abspath(input_path)))

            result = self.markdown_to_docx(read_file(input_path), options)
            result.warnings[:0] = [issue.message for issue in validation.warnings]
            if result.success:
                write_file(output_path, result.output)
                logger.info("DOCX file saved: %s", output_path)
            return result
        except (DocxConversionError, OSError, UnicodeDecodeError) as e:
            message = getattr(e, 'message', None) or str(e)
            return self._failure(
                ConversionError('FILE_CONVERSION_FAILED', message, {'input': input_path, 'output': output_path}),
                log_message=f"Failed to convert {input_path}",
            )

    # --- DOCX -> Markdown ---

    def docx_to_markdown(self, package_bytes, options=None):
        """Convert DOCX bytes to Markdown text.

        Returns:
            ConversionResult with ``output`` set to the Markdown string
        """
        context = self._new_context()

        try:
            options = self._options(DocxToMarkdownOptions, options)
            text, model, warnings, image_count = DocxToMarkdown.convert(
                package_bytes, options, self.config, context,
            )
        except DocxConversionError as e:
            return self._failure(e.to_error(), log_message="DOCX to Markdown conversion failed")
        except OSError as e:
            return self._failure(
                ConversionError('FILE_CONVERSION_FAILED', f"Could not write extracted images: {e}"),
                log_message="DOCX to Markdown conversion failed",
            )
        except Exception as e:
            logger.error("Unexpected error converting DOCX to Markdown: %s", e, exc_info=True)
            return ConversionResult.failure(ConversionError('CONVERSION_FAILED', str(e)))

        words = _word_count(model.blocks)
        meta = ConversionMetadata(
            input_size=len(package_bytes),
            output_size=len(text.encode('utf-8')),
            processing_time_ms=context.elapsed_ms(),
            page_count=max(1, math.ceil(words / self.config.WORDS_PER_PAGE)),
            image_count=image_count,
        )
        logger.info("Converted DOCX to Markdown in %.0f ms (%d warnings)", meta.processing_time_ms, len(warnings))
        return ConversionResult(success=True, output=text, metadata=meta, warnings=warnings)

    def docx_file_to_markdown(self, input_path, output_path=None, options=None):
        """Convert a DOCX file, writing Markdown to ``output_path`` when given.

        Extracted images go to an ``images`` directory beside the output
        unless ``image_output_dir`` is set.
        """
        logger.info("Converting %s -> %s", input_path, output_path or '(memory)')
        try:
            validation = validate_file(input_path, DOCX_EXTENSIONS, self.config)
            if not validation.is_valid:
                raise FileConversionFailedError(
                    f"Invalid input file: {', '.join(e.message for e in validation.errors)}",
                    details={'input': input_path, 'output': output_path,
                             'errors': [e.code for e in validation.errors]},
                )

            options = self._options(DocxToMarkdownOptions, options)
            if options.extract_images and options.image_output_dir is None and output_path:
                options = options.merged(
                    image_output_dir=os.path.join(os.path.dirname(os.path.abspath(output_path)), 'images')
                )

            result = self.docx_to_markdown(read_file(input_path, binary=True), options)
            if result.success and output_path:
                write_file(output_path, result.output)
                logger.info("Markdown file saved: %s", output_path)
            return result
        except (DocxConversionError, OSError) as e:
            message = getattr(e, 'message', None) or str(e)
            return self._failure(
                ConversionError('FILE_CONVERSION_FAILED', message, {'input': input_path, 'output': output_path}),
                log_message=f"Failed to convert {input_path}",
            )

    # --- Batch ---

    def _batch(self, input_files, output_dir, convert_one, ext_re, new_ext, progress):
        ensure_writable_dir(output_dir)
        total = len(input_files)
        results: List[BatchItem] = []
        context = self._new_context()
        used_names = set()

        for index, input_file in enumerate(input_files):
            if index:
                context.check_cancelled('between batch items')
            file_name = ext_re.sub(new_ext, os.path.basename(input_file))
            if not file_name.endswith(new_ext):
                file_name += new_ext
            if file_name in used_names:
                # Same base name from another directory
                file_name = generate_unique_file_name(file_name)
            used_names.add(file_name)
            output_file = os.path.join(output_dir, file_name)
            try:
                result = convert_one(input_file, output_file)
            except Exception as e:
                logger.error("Failed to convert file %s: %s", input_file, e, exc_info=True)
                result = ConversionResult.failure(
                    BatchConversionError(str(e), details={'input': input_file}).to_error()
                )
            results.append(BatchItem(input=input_file, output=output_file, result=result))
            if progress is not None:
                progress(index + 1, total)

        successful = sum(1 for item in results if item.result.success)
        logger.info("Batch conversion completed: %d/%d files converted successfully", successful, total)
        return results

    def batch_markdown_to_docx(self, input_files, output_dir, options=None, progress=None):
        """Convert Markdown files one by one into ``output_dir``.

        A failure is recorded on its own item and never stops the batch.
        ``progress(completed, total)`` is called after each file.

        Raises:
            ConversionCancelledError: If ``cancel_check`` fires between files
        """
        logger.info("Starting batch conversion of %d Markdown files", len(input_files))
        return self._batch(
            input_files, output_dir,
            lambda src, dst: self.markdown_file_to_docx(src, dst, options),
            _MARKDOWN_EXT_RE, '.docx', progress,
        )

    def batch_docx_to_markdown(self, input_files, output_dir, options=None, progress=None):
        """Convert DOCX files one by one into ``output_dir``."""
        logger.info("Starting batch conversion of %d DOCX files", len(input_files))
        return self._batch(
            input_files, output_dir,
            lambda src, dst: self.docx_file_to_markdown(src, dst, options),
            _DOCX_EXT_RE, '.md', progress,
        )

    # --- Inspection ---

    def validate_markdown(self, content):
        """Report common problems before conversion.

        Returns:
            ValidationResult; ``is_valid`` is False when any warning exists
        """
        warnings = []
        suggestions = []

        if not re.search(r'^#{1,6}\s', content, re.MULTILINE):
            warnings.append(ValidationIssue('NO_HEADINGS', 'No headings found - consider adding section headers'))

        for line_no, line in enumerate(content.split('\n'), start=1):
            for match in _MALFORMED_HTTP_RE.finditer(line):
                url = match.group(1)
                if '://' not in url:
                    warnings.append(ValidationIssue(MalformedLinkError.code, f'Potentially malformed URL: {url}', line_no))

        resolver = LinkResolver()
        for label, ref in resolver.extract_reference_definitions(content).items():
            if not resolver.resolve(label, ref['url']).is_valid:
                warnings.append(ValidationIssue(
                    MalformedLinkError.code, f'Potentially malformed URL in reference [{label}]: {ref["url"]}',
                ))

        diagrams = len(MERMAID_FENCE_RE.findall(content.replace('\r\n', '\n')))
        if diagrams:
            suggestions.append(f'Found {diagrams} Mermaid diagram(s) - will be converted to images')
        table_rows = len(re.findall(r'^\s*\|.*\|\s*$', content, re.MULTILINE))
        if table_rows:
            suggestions.append(f'Found {table_rows} table row(s) - formatting will be preserved')

        return ValidationResult(is_valid=not warnings, warnings=warnings, suggestions=suggestions)

    def get_conversion_stats(self, file_path):
        """Statistics for a Markdown file.

        Raises:
            InputFileNotFoundError, NotAFileError: If the file cannot be read
        """
        content = read_file(file_path)
        _metadata, body = parse_markdown_string_with_frontmatter(content)
        blocks = MarkoBlockParser().parse(body.replace('\r\n', '\n'))

        words = len(content.split())
        inlines = list(iter_inlines(blocks))
        headings = [b for b in iter_blocks(blocks) if b.get('t') == 'Header']
        anchors = {slugify(plain_text(h['c'][2])) for h in headings}
        links = LinkResolver().resolve_all(
            [(plain_text(i['c'][1]), i['c'][2][0]) for i in inlines if i.get('t') == 'Link'], anchors,
        )
        return {
            'file_size': _format_bytes(len(content.encode('utf-8'))),
            'word_count': words,
            'reading_time': math.ceil(words / 200),
            'line_count': len(content.split('\n')),
            'heading_count': len(headings),
            'link_count': len(links),
            'links': link_statistics(links),
            'image_count': sum(1 for i in inlines if i.get('t') == 'Image'),
            'diagram_count': len(MERMAID_FENCE_RE.findall(body.replace('\r\n', '\n'))),
            'estimated_pages': max(1, math.ceil(_word_count(blocks) / self.config.WORDS_PER_PAGE)),
        }

    @staticmethod
    def get_available_templates():
        return available_templates()

    @staticmethod
    def get_available_themes():
        return available_mermaid_themes()


def convert_string(markdown_string, output_path, options=None, config=None):
    """Convert a Markdown string to a DOCX file.

    Args:
        markdown_string: Markdown text (may include YAML front matter)
        output_path: Output .docx file path
        options: MarkdownToDocxOptions or dict
        config: Optional ConversionConfig instance

    Returns:
        ConversionResult; the file is written only on success
    """
    result = MarkdownDocxConverter(config=config).markdown_to_docx(markdown_string, options)
    if result.success:
        write_file(output_path, result.output)
    return result
