"""
Style registry: named document templates and Mermaid themes.

A *style bundle* is a plain nested dict describing fonts, colors, spacing
and borders for headings, paragraphs, code blocks, tables and links. Font
sizes are in points, spacing and indents in twips (1/20 pt), line spacing in
240ths of a line, border widths in eighths of a point, colors as RRGGBB.

The registry is stateless: :func:`get_template` returns a fresh deep copy
so callers can merge overrides without touching the shared definitions.

The reverse direction uses :data:`STYLE_SEMANTICS`, an explicit map from
DOCX style identifiers to semantic constructs, with an ``UNKNOWN`` variant
for anything else.
"""

from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .exceptions import InvalidTemplateError, StyleError

logger = logging.getLogger('md2docx')

TEMPLATE_NAMES = (
    'professional-report',
    'technical-documentation',
    'business-proposal',
    'academic-paper',
    'simple',
    'modern',
    'classic',
)

MERMAID_THEMES = ('default', 'forest', 'dark', 'neutral', 'base')

HEADING_KEYS = ('h1', 'h2', 'h3', 'h4', 'h5', 'h6')

ALIGNMENTS = {
    'left': 'left',
    'center': 'center',
    'right': 'right',
    'justify': 'both',
}


def _headings(font, colors, sizes, space, bold=True, italic_from=None, border_h1=None):
    """Build h1-h6 rules from per-level sizes and a color ramp.

    ``colors`` and ``space`` may be shorter than six entries; the last value
    carries over to the remaining levels.
    """
    rules = {}
    for idx, key in enumerate(HEADING_KEYS):
        before, after = space[min(idx, len(space) - 1)]
        rules[key] = {
            'font': font,
            'font_size': sizes[idx],
            'color': colors[min(idx, len(colors) - 1)],
            'bold': bold,
            'italic': italic_from is not None and idx + 1 >= italic_from,
            'underline': False,
            'alignment': None,
            'space_before': before,
            'space_after': after,
            'border_bottom': None,
        }
    if border_h1:
        rules['h1']['border_bottom'] = border_h1
    return rules


def _code_block(font, size, color, background, border_color, border_width=6, indent=720):
    return {
        'font': font,
        'font_size': size,
        'color': color,
        'background': background,
        'border_color': border_color,
        'border_width': border_width,
        'border_style': 'single',
        'indent_left': indent,
        'space_before': 120,
        'space_after': 120,
    }


def _table(border_color, inner_color, header_background, border_width=4, border_style='single',
           header_color=None, alternate_row_shading=None):
    return {
        'border_color': border_color,
        'border_width': border_width,
        'border_style': border_style,
        'inner_border_color': inner_color,
        'header_background': header_background,
        'header_color': header_color,
        'header_bold': True,
        'cell_padding': 100,
        'alternate_row_shading': alternate_row_shading,
    }


def _paragraph(font, size, color, alignment=None, line_spacing=276, space_after=120):
    return {
        'font': font,
        'font_size': size,
        'color': color,
        'bold': False,
        'italic': False,
        'alignment': alignment,
        'space_before': 0,
        'space_after': space_after,
        'line_spacing': line_spacing,
        'indent_left': 0,
        'indent_right': 0,
        'indent_first_line': 0,
    }


def _page(margin=1440, orientation='portrait'):
    return {
        'orientation': orientation,
        'margins': {'top': margin, 'right': margin, 'bottom': margin, 'left': margin},
    }


_TEMPLATES: Dict[str, Dict[str, Any]] = {
    # Clean sans-serif, justified body, blue accent headings, running header
    # and centered page numbers. Default for business and consulting reports.
    'professional-report': {
        'headings': _headings(
            'Calibri Light', ['2F5597', '2F5597', '333333'], [16, 14, 13, 12, 11, 11],
            [(240, 120), (180, 60), (120, 60)],
            border_h1={'color': '2F5597', 'width': 6},
        ),
        'paragraph': _paragraph('Calibri', 12, '333333', alignment='justify'),
        'code_block': _code_block('Consolas', 10, '333333', 'F8F8F8', 'CCCCCC'),
        'table': _table('2F5597', 'CCCCCC', 'DEEAF6', border_width=8),
        'link': {'color': '0563C1', 'underline': True, 'bold': False, 'italic': False},
        'page': _page(),
        'header_text': 'Professional Report',
        'page_numbers': True,
    },
    # Friendly monospace code and tighter spacing for developer docs.
    'technical-documentation': {
        'headings': _headings(
            'Source Sans Pro', ['1E88E5', '1976D2', '424242'], [18, 15, 13, 12, 11, 11],
            [(360, 180), (240, 120), (180, 60)],
        ),
        'paragraph': _paragraph('Source Sans Pro', 11, '333333', line_spacing=240),
        'code_block': _code_block('JetBrains Mono', 9, '263238', 'F5F5F5', '1E88E5',
                                  border_width=12, indent=360),
        'table': _table('1E88E5', 'E0E0E0', 'E3F2FD', border_width=8, alternate_row_shading='FAFAFA'),
        'link': {'color': '1E88E5', 'underline': True, 'bold': False, 'italic': False},
        'page': _page(1080),
        'header_text': None,
        'page_numbers': True,
    },
    # Serif typography with generous spacing and warm accents.
    'business-proposal': {
        'headings': _headings(
            'Georgia', ['8B4513'], [20, 16, 14, 12, 12, 11],
            [(480, 240), (360, 120), (240, 120)],
        ),
        'paragraph': _paragraph('Georgia', 12, '333333', line_spacing=360, space_after=200),
        'code_block': _code_block('Courier New', 10, '333333', 'FAF6F0', '8B4513'),
        'table': _table('8B4513', 'DDDDDD', 'F5E6D8', border_style='double'),
        'link': {'color': '8B4513', 'underline': True, 'bold': False, 'italic': False},
        'page': _page(),
        'header_text': None,
        'page_numbers': True,
    },
    # Times New Roman, double spacing, black headings of one size.
    'academic-paper': {
        'headings': _headings(
            'Times New Roman', ['000000'], [12, 12, 12, 12, 12, 12],
            [(240, 240), (240, 120)], italic_from=3,
        ),
        'paragraph': _paragraph('Times New Roman', 12, '000000', alignment='justify',
                                line_spacing=480, space_after=0),
        'code_block': _code_block('Courier New', 10, '000000', 'FFFFFF', '000000', border_width=4),
        'table': _table('000000', '000000', 'FFFFFF', border_width=4),
        'link': {'color': '000000', 'underline': True, 'bold': False, 'italic': False},
        'page': _page(),
        'header_text': None,
        'page_numbers': True,
    },
    # Plain Arial; also the fallback look when no template is requested.
    'simple': {
        'headings': _headings(
            'Arial', ['000000'], [16, 14, 13, 12, 11, 11],
            [(240, 120), (180, 60)],
        ),
        'paragraph': _paragraph('Arial', 12, '000000'),
        'code_block': _code_block('Courier New', 9, '333333', 'F8F8F8', 'DDDDDD', border_width=4, indent=0),
        'table': _table('000000', '000000', 'E6E6E6'),
        'link': {'color': '0000FF', 'underline': True, 'bold': False, 'italic': False},
        'page': _page(),
        'header_text': None,
        'page_numbers': False,
    },
    # Light Segoe typography with large first-level headings.
    'modern': {
        'headings': _headings(
            'Segoe UI Light', ['0078D4', '323130'], [24, 16, 14, 12, 11, 11],
            [(360, 200), (240, 120), (180, 60)],
        ),
        'paragraph': _paragraph('Segoe UI', 11, '333333'),
        'code_block': _code_block('Cascadia Code', 10, '323130', 'F3F2F1', '0078D4', border_width=12),
        'table': _table('0078D4', 'EDEBE9', 'F3F2F1', alternate_row_shading='FAF9F8'),
        'link': {'color': '0078D4', 'underline': False, 'bold': False, 'italic': False},
        'page': _page(),
        'header_text': None,
        'page_numbers': False,
    },
    # Book Antiqua with maroon accents and double table rules.
    'classic': {
        'headings': _headings(
            'Book Antiqua', ['800000'], [18, 14, 13, 12, 12, 11],
            [(360, 180), (240, 120)],
        ),
        'paragraph': _paragraph('Book Antiqua', 12, '000000', alignment='justify'),
        'code_block': _code_block('Courier New', 10, '000000', 'F8F8F8', '800000'),
        'table': _table('800000', 'CCCCCC', 'F2E6E6', border_style='double', border_width=6),
        'link': {'color': '800000', 'underline': True, 'bold': False, 'italic': False},
        'page': _page(),
        'header_text': None,
        'page_numbers': True,
    },
}


def available_templates():
    return list(TEMPLATE_NAMES)


def available_mermaid_themes():
    return list(MERMAID_THEMES)


def get_template(template_id: str) -> Dict[str, Any]:
    """Return the style bundle for a template id.

    Args:
        template_id: One of :data:`TEMPLATE_NAMES`

    Returns:
        A deep copy of the bundle, with ``name`` set

    Raises:
        InvalidTemplateError: If the template id is unknown
    """
    if template_id not in _TEMPLATES:
        raise InvalidTemplateError(
            f"Unknown template: {template_id}. Available templates: {', '.join(TEMPLATE_NAMES)}",
            details={'template': template_id},
        )
    bundle = copy.deepcopy(_TEMPLATES[template_id])
    bundle['name'] = template_id
    return bundle


def validate_mermaid_theme(theme: str) -> str:
    """Return ``theme`` if it is a known Mermaid theme.

    Raises:
        InvalidTemplateError: If the theme is unknown
    """
    if theme not in MERMAID_THEMES:
        raise InvalidTemplateError(
            f"Unknown Mermaid theme: {theme}. Available themes: {', '.join(MERMAID_THEMES)}",
            details={'mermaidTheme': theme},
        )
    return theme


_BUNDLE_SECTIONS = ('headings', 'paragraph', 'code_block', 'table', 'link')
_HEX_COLOR_RE = re.compile(r'^#?[0-9A-Fa-f]{6}$')


def _merge_rule(base: Dict[str, Any], override: Dict[str, Any], path: str) -> None:
    for key, value in override.items():
        if key not in base:
            logger.warning("Ignoring unknown style field %s.%s", path, key)
            continue
        if isinstance(base[key], dict) and isinstance(value, dict):
            _merge_rule(base[key], value, f"{path}.{key}")
            continue
        if key.endswith('color') and value is not None:
            if not isinstance(value, str) or not _HEX_COLOR_RE.match(value):
                raise StyleError(f"Invalid color for {path}.{key}: {value!r}")
            value = value.lstrip('#').upper()
        base[key] = value


def merge_custom_styles(bundle: Dict[str, Any], custom: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Merge user style overrides over a template bundle, field by field.

    ``custom`` mirrors the bundle layout, e.g.
    ``{"headings": {"h1": {"color": "FF0000"}}, "link": {"bold": True}}``.
    User values win; fields the user leaves out keep the template value.

    Returns:
        A new bundle; ``bundle`` is not modified.

    Raises:
        StyleError: If an override carries an invalid color
    """
    merged = copy.deepcopy(bundle)
    if not custom:
        return merged

    for section, override in custom.items():
        if section not in _BUNDLE_SECTIONS:
            logger.warning("Ignoring unknown custom style section: %s", section)
            continue
        if not isinstance(override, dict):
            raise StyleError(f"Custom style section '{section}' must be a mapping")
        if section == 'headings':
            for level_key, rule in override.items():
                if level_key not in HEADING_KEYS:
                    logger.warning("Ignoring unknown heading style: %s", level_key)
                    continue
                _merge_rule(merged['headings'][level_key], rule or {}, f"headings.{level_key}")
        else:
            _merge_rule(merged[section], override, section)
    return merged


def resolve_bundle(template_id: str, custom: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Look up a template and apply custom overrides in one step."""
    return merge_custom_styles(get_template(template_id), custom)


# --- Reverse mapping: DOCX style identifiers -> semantic constructs ---

class StyleKind(str, Enum):
    HEADING = 'heading'
    TITLE = 'title'
    SUBTITLE = 'subtitle'
    PARAGRAPH = 'paragraph'
    LIST_BULLET = 'list_bullet'
    LIST_NUMBER = 'list_number'
    LIST_PARAGRAPH = 'list_paragraph'
    CODE = 'code'
    QUOTE = 'quote'
    TOC_HEADING = 'toc_heading'
    TOC_ENTRY = 'toc_entry'
    CAPTION = 'caption'
    HORIZONTAL_RULE = 'horizontal_rule'
    UNKNOWN = 'unknown'


@dataclass(frozen=True)
class StyleSemantic:
    kind: StyleKind
    level: int = 0

    @property
    def is_unknown(self) -> bool:
        return self.kind is StyleKind.UNKNOWN


def _normalize_style_key(value: str) -> str:
    return re.sub(r'[\s_-]+', '', value).lower()


STYLE_SEMANTICS: Dict[str, StyleSemantic] = {
    'normal': StyleSemantic(StyleKind.PARAGRAPH),
    'bodytext': StyleSemantic(StyleKind.PARAGRAPH),
    'firstparagraph': StyleSemantic(StyleKind.PARAGRAPH),
    'compact': StyleSemantic(StyleKind.PARAGRAPH),
    'nospacing': StyleSemantic(StyleKind.PARAGRAPH),
    'normalweb': StyleSemantic(StyleKind.PARAGRAPH),
    'title': StyleSemantic(StyleKind.TITLE, 1),
    'subtitle': StyleSemantic(StyleKind.SUBTITLE, 2),
    'listbullet': StyleSemantic(StyleKind.LIST_BULLET, 0),
    'listbullet2': StyleSemantic(StyleKind.LIST_BULLET, 1),
    'listbullet3': StyleSemantic(StyleKind.LIST_BULLET, 2),
    'listnumber': StyleSemantic(StyleKind.LIST_NUMBER, 0),
    'listnumber2': StyleSemantic(StyleKind.LIST_NUMBER, 1),
    'listnumber3': StyleSemantic(StyleKind.LIST_NUMBER, 2),
    'listparagraph': StyleSemantic(StyleKind.LIST_PARAGRAPH),
    'code': StyleSemantic(StyleKind.CODE),
    'codeblock': StyleSemantic(StyleKind.CODE),
    'sourcecode': StyleSemantic(StyleKind.CODE),
    'htmlpreformatted': StyleSemantic(StyleKind.CODE),
    'quote': StyleSemantic(StyleKind.QUOTE),
    'intensequote': StyleSemantic(StyleKind.QUOTE),
    'blockquote': StyleSemantic(StyleKind.QUOTE),
    'blocktext': StyleSemantic(StyleKind.QUOTE),
    'tocheading': StyleSemantic(StyleKind.TOC_HEADING),
    'caption': StyleSemantic(StyleKind.CAPTION),
    'horizontalrule': StyleSemantic(StyleKind.HORIZONTAL_RULE),
}
STYLE_SEMANTICS.update({
    f'heading{level}': StyleSemantic(StyleKind.HEADING, min(level, 6)) for level in range(1, 10)
})
STYLE_SEMANTICS.update({
    f'toc{level}': StyleSemantic(StyleKind.TOC_ENTRY, level) for level in range(1, 10)
})

UNKNOWN_STYLE = StyleSemantic(StyleKind.UNKNOWN)


def resolve_style_semantic(style_id: Optional[str], style_name: Optional[str] = None) -> StyleSemantic:
    """Map a paragraph style to its semantic construct.

    The style id is tried first, then the display name from styles.xml
    (Word localizes ids but keeps English names for built-ins). A paragraph
    without a style is a plain paragraph.

    Returns:
        The matching :class:`StyleSemantic`, or :data:`UNKNOWN_STYLE`
    """
    if not style_id and not style_name:
        return STYLE_SEMANTICS['normal']
    for candidate in (style_id, style_name):
        if candidate:
            semantic = STYLE_SEMANTICS.get(_normalize_style_key(candidate))
            if semantic is not None:
                return semantic
    return UNKNOWN_STYLE
