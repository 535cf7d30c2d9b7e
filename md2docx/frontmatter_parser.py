"""
YAML front matter parser using python-frontmatter.
"""

import datetime
import logging

import frontmatter

logger = logging.getLogger('md2docx')

# Front matter keys that fill document properties
METADATA_FIELDS = ('title', 'author', 'subject', 'description', 'keywords')


def parse_markdown_with_frontmatter(file_path: str) -> tuple[dict, str]:
    """
    Parse a Markdown file with YAML front matter.

    Args:
        file_path: Path to the Markdown file

    Returns:
        (metadata_dict, markdown_content_without_frontmatter)
    """
    post = frontmatter.load(file_path)
    return dict(post.metadata), post.content


def parse_markdown_string_with_frontmatter(markdown_text: str) -> tuple[dict, str]:
    """
    Parse a Markdown string with YAML front matter.

    Args:
        markdown_text: Markdown content as string

    Returns:
        (metadata_dict, markdown_content_without_frontmatter)
    """
    post = frontmatter.loads(markdown_text)
    return dict(post.metadata), post.content


def _keywords(value):
    if isinstance(value, str):
        return [k.strip() for k in value.split(',') if k.strip()]
    if isinstance(value, (list, tuple)):
        return [str(k).strip() for k in value if str(k).strip()]
    return [str(value)]


def apply_metadata_to_options(metadata: dict, options):
    """
    Fill unset document properties on ``options`` from front matter.

    Explicit option values always win over the document's own front matter.
    A ``date`` entry fills ``created_at``.

    Returns:
        A new options object; ``options`` is not modified.
    """
    overrides = {}
    for key in METADATA_FIELDS:
        value = metadata.get(key)
        if value in (None, '', []):
            continue
        current = getattr(options, key, None)
        if current:
            continue
        overrides[key] = _keywords(value) if key == 'keywords' else str(value)

    date = metadata.get('date')
    if getattr(options, 'created_at', None) is None and date is not None:
        if isinstance(date, datetime.datetime):
            overrides['created_at'] = date
        elif isinstance(date, datetime.date):
            overrides['created_at'] = datetime.datetime(date.year, date.month, date.day)
        elif isinstance(date, str):
            try:
                overrides['created_at'] = datetime.datetime.fromisoformat(date)
            except ValueError:
                # Free-form dates are kept only in the metadata dict
                logger.debug("Front matter date is not ISO 8601: %s", date)

    return options.merged(**overrides) if overrides else options
