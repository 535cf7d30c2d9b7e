"""
Anchor (slug) generation shared by headings, internal links and the
table of contents. All three must produce identical anchors for the same
heading text, so every producer goes through :func:`slugify`.
"""

import re

_NON_WORD_RE = re.compile(r'[^\w\s-]')
_SEPARATOR_RE = re.compile(r'[\s_-]+')
_BOOKMARK_INVALID_RE = re.compile(r'[^A-Za-z0-9]')
_BOOKMARK_UNDERSCORES_RE = re.compile(r'_+')


def slugify(text):
    """Generate a URL-safe anchor from heading text.

    Lowercases, trims, drops characters that are not word characters,
    whitespace or hyphens, collapses whitespace/underscore/hyphen runs into a
    single hyphen and strips leading/trailing hyphens.

    >>> slugify("Hello, World!")
    'hello-world'
    """
    if not text:
        return ''
    slug = text.lower().strip()
    slug = _NON_WORD_RE.sub('', slug)
    slug = _SEPARATOR_RE.sub('-', slug)
    return slug.strip('-')


def bookmark_name(anchor, max_length=40):
    """Map an anchor to a Word bookmark name.

    Word limits bookmark names to 40 characters, letters, digits and
    underscores, starting with a letter.
    """
    name = anchor.lstrip('#')
    name = _BOOKMARK_INVALID_RE.sub('_', name)
    name = _BOOKMARK_UNDERSCORES_RE.sub('_', name).strip('_')
    if not name or not name[0].isalpha():
        name = 'h_' + name
    return name[:max_length]
