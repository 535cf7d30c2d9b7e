"""
md2docx - Markdown <-> DOCX Converter

Command line entry point. The conversion direction of ``convert`` follows
the input file's extension.
"""

import argparse
import json
import logging
import os
import sys

from . import __version__
from .converter_api import DOCX_EXTENSIONS, MARKDOWN_EXTENSIONS, MarkdownDocxConverter
from .exceptions import DocxConversionError
from .file_utils import read_file
from .styles import MERMAID_THEMES, TEMPLATE_NAMES, available_mermaid_themes, available_templates

logger = logging.getLogger('md2docx')


def setup_logging(verbose=False, quiet=False):
    """Configure logging based on CLI flags.

    Args:
        verbose: If True, show DEBUG level messages
        quiet: If True, suppress all non-error output
    """
    if quiet:
        level = logging.ERROR
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter('%(levelname)s: %(message)s'))
    root_logger = logging.getLogger('md2docx')
    root_logger.setLevel(level)
    root_logger.handlers = [handler]


def _options_from_args(args):
    options = {
        'template': args.template,
        'mermaid_theme': args.theme,
        'toc_generation': args.toc,
        'preserve_links': not args.no_links,
        'renderer_backend': args.renderer,
        'kroki_url': args.kroki_url,
        'extract_images': args.extract_images,
        'image_output_dir': args.image_dir,
        'preserve_formatting': args.preserve_formatting,
    }
    if args.title:
        options['title'] = args.title
    if args.author:
        options['author'] = args.author
    if args.landscape:
        options['orientation'] = 'landscape'
    if args.workers:
        options['diagram_max_workers'] = args.workers
    return options


def _add_conversion_flags(parser):
    group = parser.add_argument_group('conversion options')
    group.add_argument("-t", "--template", default='simple', choices=TEMPLATE_NAMES,
                       help="Style template (default: simple)")
    group.add_argument("--theme", default='default', choices=MERMAID_THEMES,
                       help="Mermaid diagram theme (default: default)")
    group.add_argument("--toc", action="store_true", default=False,
                       help="Insert a table of contents")
    group.add_argument("--no-links", action="store_true", default=False,
                       help="Emit link text without hyperlinks")
    group.add_argument("--title", default=None, help="Document title (overrides front matter)")
    group.add_argument("--author", default=None, help="Document author (overrides front matter)")
    group.add_argument("--landscape", action="store_true", default=False,
                       help="Landscape page orientation")
    group.add_argument("--renderer", default='kroki', choices=('kroki', 'mmdc'),
                       help="Mermaid rendering backend (default: kroki)")
    group.add_argument("--kroki-url", default=None, help="Kroki server URL")
    group.add_argument("--workers", type=int, default=None,
                       help="Render diagrams concurrently with this many workers")
    group.add_argument("--extract-images", action="store_true", default=False,
                       help="DOCX -> Markdown: write embedded images to disk")
    group.add_argument("--image-dir", default=None,
                       help="DOCX -> Markdown: directory for extracted images")
    group.add_argument("--preserve-formatting", action="store_true", default=False,
                       help="DOCX -> Markdown: keep hard line breaks and underline")


def _report(result, label):
    for warning in result.warnings:
        logger.warning("%s", warning)
    if result.success:
        logger.info("Successfully converted %s", label)
        return 0
    logger.error("%s: %s (%s)", label, result.error.message, result.error.code)
    return 1


def cmd_convert(converter, args):
    input_ext = os.path.splitext(args.input_file)[1].lower()
    output = args.output
    options = _options_from_args(args)

    if input_ext in MARKDOWN_EXTENSIONS:
        output = output or os.path.splitext(args.input_file)[0] + '.docx'
        result = converter.markdown_file_to_docx(args.input_file, output, options)
    elif input_ext in DOCX_EXTENSIONS:
        output = output or os.path.splitext(args.input_file)[0] + '.md'
        result = converter.docx_file_to_markdown(args.input_file, output, options)
    else:
        logger.error("Unsupported input format: %s", input_ext or '(none)')
        logger.error("Supported formats: .md, .markdown, .docx")
        return 1
    return _report(result, f"{args.input_file} -> {output}")


def cmd_batch(converter, args):
    options = _options_from_args(args)
    md_files = [f for f in args.inputs if os.path.splitext(f)[1].lower() in MARKDOWN_EXTENSIONS]
    docx_files = [f for f in args.inputs if os.path.splitext(f)[1].lower() in DOCX_EXTENSIONS]
    skipped = len(args.inputs) - len(md_files) - len(docx_files)
    if skipped:
        logger.warning("Skipping %d files with unsupported extensions", skipped)

    def progress(done, total):
        logger.info("[%d/%d]", done, total)

    items = []
    if md_files:
        items.extend(converter.batch_markdown_to_docx(md_files, args.output_dir, options, progress))
    if docx_files:
        items.extend(converter.batch_docx_to_markdown(docx_files, args.output_dir, options, progress))

    failed = 0
    for item in items:
        if not item.result.success:
            failed += 1
            logger.error("%s: %s (%s)", item.input, item.result.error.message, item.result.error.code)
    logger.info("%d of %d files converted", len(items) - failed, len(items))
    return 1 if failed or skipped else 0


def cmd_validate(converter, args):
    result = converter.validate_markdown(read_file(args.input_file))
    for issue in result.warnings:
        where = f"line {issue.line}: " if issue.line else ''
        logger.warning("%s%s", where, issue.message)
    for suggestion in result.suggestions:
        logger.info("%s", suggestion)
    if result.is_valid:
        logger.info("%s looks good", args.input_file)
    return 0 if result.is_valid else 1


def cmd_stats(converter, args):
    stats = converter.get_conversion_stats(args.input_file)
    print(json.dumps(stats, indent=2, ensure_ascii=False))
    return 0


def cmd_templates(converter, args):
    print("Templates:")
    for name in available_templates():
        print(f"  {name}")
    print("Mermaid themes:")
    for name in available_mermaid_themes():
        print(f"  {name}")
    return 0


def build_parser():
    parser = argparse.ArgumentParser(
        prog="md2docx",
        description="Convert between Markdown and DOCX.",
        epilog="Examples:\n"
               "  md2docx convert input.md -o output.docx\n"
               "  md2docx convert input.md -o report.docx --template professional-report --toc\n"
               "  md2docx convert input.docx -o output.md --extract-images\n"
               "  md2docx batch docs/*.md -d out/\n"
               "  md2docx validate input.md",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--verbose", action="store_true", default=False,
                        help="Show detailed debug output")
    parser.add_argument("-q", "--quiet", action="store_true", default=False,
                        help="Suppress all non-error output")

    sub = parser.add_subparsers(dest="command", required=True)

    convert = sub.add_parser("convert", help="Convert one file (direction by extension)")
    convert.add_argument("input_file", help="Input file (.md, .markdown or .docx)")
    convert.add_argument("-o", "--output", default=None,
                         help="Output file (default: input name with the other extension)")
    _add_conversion_flags(convert)
    convert.set_defaults(func=cmd_convert)

    batch = sub.add_parser("batch", help="Convert many files into a directory")
    batch.add_argument("inputs", nargs="+", help="Input files")
    batch.add_argument("-d", "--output-dir", required=True, help="Output directory")
    _add_conversion_flags(batch)
    batch.set_defaults(func=cmd_batch)

    validate = sub.add_parser("validate", help="Check a Markdown file for common problems")
    validate.add_argument("input_file", help="Input Markdown file")
    validate.set_defaults(func=cmd_validate)

    stats = sub.add_parser("stats", help="Print statistics for a Markdown file")
    stats.add_argument("input_file", help="Input Markdown file")
    stats.set_defaults(func=cmd_stats)

    templates = sub.add_parser("templates", help="List style templates and diagram themes")
    templates.set_defaults(func=cmd_templates)
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(verbose=args.verbose, quiet=args.quiet)

    converter = MarkdownDocxConverter()
    try:
        code = args.func(converter, args)
    except DocxConversionError as e:
        logger.error("%s", e)
        code = 1
    except OSError as e:
        logger.error("%s", e)
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
