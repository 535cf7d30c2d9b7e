import datetime
import io
import logging
import math
import os
import re
import zipfile
import xml.etree.ElementTree as ET

from PIL import Image

from .anchors import bookmark_name
from .config import DEFAULT_CONFIG
from .context import ConversionContext
from .exceptions import PackageStructureError, SecurityError
from .link_resolver import generate_table_of_contents
from .models import block_text, iter_blocks, plain_text
from .options import MarkdownToDocxOptions
from .styles import ALIGNMENTS, HEADING_KEYS, get_template, merge_custom_styles

logger = logging.getLogger('md2docx')

# XML Namespaces for WordprocessingML packages
NAMESPACES = {
    'w': 'http://schemas.openxmlformats.org/wordprocessingml/2006/main',
    'r': 'http://schemas.openxmlformats.org/officeDocument/2006/relationships',
    'wp': 'http://schemas.openxmlformats.org/drawingml/2006/wordprocessingDrawing',
    'a': 'http://schemas.openxmlformats.org/drawingml/2006/main',
    'pic': 'http://schemas.openxmlformats.org/drawingml/2006/picture',
    'cp': 'http://schemas.openxmlformats.org/package/2006/metadata/core-properties',
    'dc': 'http://purl.org/dc/elements/1.1/',
    'dcterms': 'http://purl.org/dc/terms/',
    'xsi': 'http://www.w3.org/2001/XMLSchema-instance',
    'ep': 'http://schemas.openxmlformats.org/officeDocument/2006/extended-properties',
    'xml': 'http://www.w3.org/XML/1998/namespace',
}
NS_PKG_REL = 'http://schemas.openxmlformats.org/package/2006/relationships'
NS_CONTENT_TYPES = 'http://schemas.openxmlformats.org/package/2006/content-types'

for _prefix, _uri in NAMESPACES.items():
    if _prefix != 'xml':
        ET.register_namespace(_prefix, _uri)

_REL_BASE = 'http://schemas.openxmlformats.org/officeDocument/2006/relationships'
REL_TYPES = {
    'document': f'{_REL_BASE}/officeDocument',
    'styles': f'{_REL_BASE}/styles',
    'numbering': f'{_REL_BASE}/numbering',
    'settings': f'{_REL_BASE}/settings',
    'header': f'{_REL_BASE}/header',
    'footer': f'{_REL_BASE}/footer',
    'image': f'{_REL_BASE}/image',
    'hyperlink': f'{_REL_BASE}/hyperlink',
    'app': f'{_REL_BASE}/extended-properties',
    'core': 'http://schemas.openxmlformats.org/package/2006/relationships/metadata/core-properties',
}

_CT_BASE = 'application/vnd.openxmlformats-officedocument.wordprocessingml'
CONTENT_TYPES = {
    '/word/document.xml': f'{_CT_BASE}.document.main+xml',
    '/word/styles.xml': f'{_CT_BASE}.styles+xml',
    '/word/numbering.xml': f'{_CT_BASE}.numbering+xml',
    '/word/settings.xml': f'{_CT_BASE}.settings+xml',
    '/word/header1.xml': f'{_CT_BASE}.header+xml',
    '/word/footer1.xml': f'{_CT_BASE}.footer+xml',
    '/docProps/core.xml': 'application/vnd.openxmlformats-package.core-properties+xml',
    '/docProps/app.xml': 'application/vnd.openxmlformats-officedocument.extended-properties+xml',
}
IMAGE_CONTENT_TYPES = {
    'png': 'image/png',
    'jpeg': 'image/jpeg',
    'jpg': 'image/jpeg',
    'gif': 'image/gif',
    'bmp': 'image/bmp',
}

DIAGRAM_REF_RE = re.compile(r'^mermaid-(?P<id>[0-9a-fA-F-]+)\.png$')
_XML_SPACE = f"{{{NAMESPACES['xml']}}}space"


def _qname(name):
    """Expand a ``prefix:tag`` name to Clark notation."""
    prefix, _, local = name.partition(':')
    return f'{{{NAMESPACES[prefix]}}}{local}'


def _qattrs(attrib):
    return {(_qname(k) if ':' in k else k): str(v) for k, v in (attrib or {}).items() if v is not None}


def _half_points(size):
    return str(int(round(float(size) * 2)))


class RelationshipRegistry:
    """Assigns ``rIdN`` identifiers, one per distinct (type, target).

    Registering the same target twice returns the same id, so an image
    referenced from several paragraphs is stored once.
    """

    def __init__(self):
        self._ids = {}
        self._rels = []

    def add(self, rel_type, target, external=False):
        key = (rel_type, target, external)
        if key not in self._ids:
            rid = f'rId{len(self._rels) + 1}'
            self._ids[key] = rid
            self._rels.append((rid, REL_TYPES[rel_type], target, external))
        return self._ids[key]

    def __len__(self):
        return len(self._rels)

    def __iter__(self):
        return iter(self._rels)

    def to_xml(self):
        root = ET.Element(f'{{{NS_PKG_REL}}}Relationships')
        for rid, rel_type, target, external in self._rels:
            attrib = {'Id': rid, 'Type': rel_type, 'Target': target}
            if external:
                attrib['TargetMode'] = 'External'
            ET.SubElement(root, f'{{{NS_PKG_REL}}}Relationship', attrib)
        return ET.tostring(root, encoding='UTF-8', xml_declaration=True)


class MarkdownToDocx:
    """Serialize a DocumentModel into a DOCX package.

    The tree is only read; all state produced while writing (relationships,
    media, numbering instances, counters, warnings) lives on this object.
    """

    def __init__(self, model, diagrams=(), links=(), bundle=None, options=None, config=None, context=None):
        self.model = model
        # Resolved links keyed by the href written in the source
        self.links = {link.url: link for link in links}
        self.options = options or MarkdownToDocxOptions()
        self.config = config if config is not None else DEFAULT_CONFIG
        self.context = context or ConversionContext(config=self.config)

        base_bundle = bundle if bundle is not None else get_template(self.options.template)
        self.bundle = merge_custom_styles(base_bundle, self.options.custom_styles)

        self.diagrams = {d.id: d for d in diagrams}
        self.rels = RelationshipRegistry()
        for part in ('styles', 'numbering', 'settings'):
            self.rels.add(part, f'{part}.xml')

        self.media = {}  # part name -> bytes
        self.media_by_source = {}  # source key -> relationship id, size
        self.warnings = []
        self.counters = {
            'page_count': 0,
            'image_count': 0,
            'diagram_count': 0,
            'internal_link_count': 0,
            'external_link_count': 0,
        }

        self._bookmark_id = 0
        self._bookmarks = {}  # anchor -> bookmark name
        self._bookmark_names = set()
        self._bookmarked_anchors = set()
        self._docpr_id = 0
        self._ordered_nums = []  # (num_id, ilvl, start)
        self._next_num_id = 2  # numId 1 is the shared bullet list
        self._quote_depth = 0
        self._list_depth = 0

    # --- XML Element Builder Helpers ---

    def _make_elem(self, tag, attrib=None, text=None):
        elem = ET.Element(_qname(tag), _qattrs(attrib))
        if text is not None:
            elem.text = str(text)
        return elem

    def _add_elem(self, parent, tag, attrib=None, text=None):
        elem = ET.SubElement(parent, _qname(tag), _qattrs(attrib))
        if text is not None:
            elem.text = str(text)
        return elem

    @staticmethod
    def _to_bytes(elem):
        return ET.tostring(elem, encoding='UTF-8', xml_declaration=True)

    def _add_text(self, run, text):
        t = self._add_elem(run, 'w:t', text=text)
        if text != text.strip() or '  ' in text:
            t.set(_XML_SPACE, 'preserve')
        return t

    def _warn(self, message, *args):
        text = message % args if args else message
        logger.warning("%s", text)
        self.warnings.append(text)

    # --- Style Properties ---

    def _rpr(self, rule, parent=None):
        """Build ``w:rPr`` from a style rule (font, size, color, emphasis)."""
        rpr = self._make_elem('w:rPr') if parent is None else self._add_elem(parent, 'w:rPr')
        font = rule.get('font')
        if font:
            self._add_elem(rpr, 'w:rFonts', {'w:ascii': font, 'w:hAnsi': font, 'w:cs': font, 'w:eastAsia': font})
        if rule.get('bold'):
            self._add_elem(rpr, 'w:b')
        if rule.get('italic'):
            self._add_elem(rpr, 'w:i')
        if rule.get('color'):
            self._add_elem(rpr, 'w:color', {'w:val': rule['color']})
        if rule.get('font_size'):
            self._add_elem(rpr, 'w:sz', {'w:val': _half_points(rule['font_size'])})
            self._add_elem(rpr, 'w:szCs', {'w:val': _half_points(rule['font_size'])})
        if rule.get('underline'):
            self._add_elem(rpr, 'w:u', {'w:val': 'single'})
        return rpr

    def _ppr(self, rule, parent):
        """Build ``w:pPr`` children (spacing, indent, alignment, border, shading)."""
        ppr = parent
        if rule.get('border_bottom'):
            border = rule['border_bottom']
            pbdr = self._add_elem(ppr, 'w:pBdr')
            self._add_elem(pbdr, 'w:bottom', {
                'w:val': 'single', 'w:sz': border.get('width', 6), 'w:space': 1,
                'w:color': border.get('color', 'auto'),
            })
        if rule.get('border_color'):
            pbdr = self._add_elem(ppr, 'w:pBdr')
            for side in ('top', 'left', 'bottom', 'right'):
                self._add_elem(pbdr, f'w:{side}', {
                    'w:val': rule.get('border_style', 'single'), 'w:sz': rule.get('border_width', 4),
                    'w:space': 4, 'w:color': rule['border_color'],
                })
        if rule.get('background'):
            self._add_elem(ppr, 'w:shd', {'w:val': 'clear', 'w:color': 'auto', 'w:fill': rule['background']})

        spacing = {}
        for key, attr in (('space_before', 'w:before'), ('space_after', 'w:after')):
            if rule.get(key) is not None:
                spacing[attr] = rule[key]
        if rule.get('line_spacing'):
            spacing['w:line'] = rule['line_spacing']
            spacing['w:lineRule'] = 'auto'
        if spacing:
            self._add_elem(ppr, 'w:spacing', spacing)

        indent = {}
        for key, attr in (('indent_left', 'w:left'), ('indent_right', 'w:right'),
                          ('indent_first_line', 'w:firstLine')):
            if rule.get(key):
                indent[attr] = rule[key]
        if indent:
            self._add_elem(ppr, 'w:ind', indent)
        if rule.get('alignment'):
            self._add_elem(ppr, 'w:jc', {'w:val': ALIGNMENTS.get(rule['alignment'], 'left')})
        return ppr

    def _add_style(self, styles, style_id, name, style_type='paragraph', based_on=None,
                   next_style=None, ppr_rule=None, rpr_rule=None, outline_level=None, extra_ppr=None):
        style = self._add_elem(styles, 'w:style', {'w:type': style_type, 'w:styleId': style_id})
        self._add_elem(style, 'w:name', {'w:val': name})
        if based_on:
            self._add_elem(style, 'w:basedOn', {'w:val': based_on})
        if next_style:
            self._add_elem(style, 'w:next', {'w:val': next_style})
        self._add_elem(style, 'w:qFormat')
        if style_type == 'paragraph' and (ppr_rule or outline_level is not None or extra_ppr):
            ppr = self._add_elem(style, 'w:pPr')
            if outline_level is not None:
                self._add_elem(ppr, 'w:keepNext')
            if extra_ppr:
                extra_ppr(ppr)
            if ppr_rule:
                self._ppr(ppr_rule, ppr)
            if outline_level is not None:
                self._add_elem(ppr, 'w:outlineLvl', {'w:val': outline_level})
        if rpr_rule:
            self._rpr(rpr_rule, style)
        return style

    def _build_styles(self):
        b = self.bundle
        para = b['paragraph']
        root = self._make_elem('w:styles')

        defaults = self._add_elem(root, 'w:docDefaults')
        rpr_default = self._add_elem(defaults, 'w:rPrDefault')
        self._rpr({'font': para['font'], 'font_size': para['font_size'], 'color': para.get('color')}, rpr_default)
        ppr_default = self._add_elem(self._add_elem(defaults, 'w:pPrDefault'), 'w:pPr')
        self._add_elem(ppr_default, 'w:spacing', {
            'w:after': para.get('space_after') or 0,
            'w:line': para.get('line_spacing') or 240,
            'w:lineRule': 'auto',
        })

        self._add_style(root, 'Normal', 'Normal', ppr_rule={
            'alignment': para.get('alignment'),
            'indent_left': para.get('indent_left'),
            'indent_right': para.get('indent_right'),
            'indent_first_line': para.get('indent_first_line'),
        }, rpr_rule={'bold': para.get('bold'), 'italic': para.get('italic')})

        for level, key in enumerate(HEADING_KEYS, start=1):
            rule = b['headings'][key]
            self._add_style(root, f'Heading{level}', f'heading {level}', based_on='Normal',
                            next_style='Normal', ppr_rule=rule, rpr_rule=rule, outline_level=level - 1)

        self._add_style(root, 'Title', 'Title', based_on='Normal', next_style='Normal',
                        ppr_rule={'alignment': 'center', 'space_after': 240},
                        rpr_rule=dict(b['headings']['h1'], font_size=b['headings']['h1']['font_size'] + 6))

        code = b['code_block']
        self._add_style(root, 'Code', 'Code', based_on='Normal', ppr_rule=dict(code, line_spacing=240), rpr_rule=code)
        self._add_style(root, 'VerbatimChar', 'Verbatim Char', style_type='character',
                        rpr_rule={'font': code['font'], 'font_size': code['font_size'], 'color': code.get('color')})

        quote_left = self.config.BLOCKQUOTE_LEFT_INDENT

        def quote_border(ppr):
            pbdr = self._add_elem(ppr, 'w:pBdr')
            self._add_elem(pbdr, 'w:left', {'w:val': 'single', 'w:sz': 18, 'w:space': 8, 'w:color': 'BFBFBF'})

        self._add_style(root, 'Quote', 'Quote', based_on='Normal', next_style='Normal',
                        ppr_rule={'indent_left': quote_left}, rpr_rule={'italic': True, 'color': '595959'},
                        extra_ppr=quote_border)

        self._add_style(root, 'Hyperlink', 'Hyperlink', style_type='character', rpr_rule=b['link'])
        self._add_style(root, 'ListParagraph', 'List Paragraph', based_on='Normal',
                        ppr_rule={'indent_left': self.config.LIST_INDENT_PER_LEVEL, 'space_after': 60})

        def rule_line(ppr):
            pbdr = self._add_elem(ppr, 'w:pBdr')
            self._add_elem(pbdr, 'w:bottom', {'w:val': 'single', 'w:sz': 6, 'w:space': 1, 'w:color': 'auto'})

        self._add_style(root, 'HorizontalRule', 'Horizontal Rule', based_on='Normal', next_style='Normal',
                        extra_ppr=rule_line)
        self._add_style(root, 'Caption', 'caption', based_on='Normal',
                        ppr_rule={'alignment': 'center'}, rpr_rule={'italic': True, 'font_size': 9})

        h1 = b['headings']['h1']
        self._add_style(root, 'TOCHeading', 'TOC Heading', based_on='Heading1', next_style='Normal',
                        rpr_rule={'color': h1.get('color')})
        for level in range(1, 7):
            self._add_style(root, f'TOC{level}', f'toc {level}', based_on='Normal', next_style='Normal',
                            ppr_rule={'indent_left': 240 * (level - 1), 'space_after': 60})

        self._add_style(root, 'Header', 'header', based_on='Normal', ppr_rule={'alignment': 'right'},
                        rpr_rule={'font_size': 9, 'color': '7F7F7F'})
        self._add_style(root, 'Footer', 'footer', based_on='Normal', ppr_rule={'alignment': 'center'},
                        rpr_rule={'font_size': 9, 'color': '7F7F7F'})

        table = self._add_style(root, 'TableGrid', 'Table Grid', style_type='table')
        tbl_pr = self._add_elem(table, 'w:tblPr')
        self._table_borders(tbl_pr)
        return self._to_bytes(root)

    def _table_borders(self, tbl_pr):
        rule = self.bundle['table']
        borders = self._add_elem(tbl_pr, 'w:tblBorders')
        for side in ('top', 'left', 'bottom', 'right'):
            self._add_elem(borders, f'w:{side}', {
                'w:val': rule['border_style'], 'w:sz': rule['border_width'], 'w:space': 0,
                'w:color': rule['border_color'],
            })
        for side in ('insideH', 'insideV'):
            self._add_elem(borders, f'w:{side}', {
                'w:val': 'single', 'w:sz': 4, 'w:space': 0, 'w:color': rule['inner_border_color'],
            })
        margins = self._add_elem(tbl_pr, 'w:tblCellMar')
        for side in ('top', 'left', 'bottom', 'right'):
            self._add_elem(margins, f'w:{side}', {'w:w': rule['cell_padding'], 'w:type': 'dxa'})

    # --- Paragraph/Run Element Creators ---

    def _create_para_elem(self, style_id=None, alignment=None, num=None, indent=None):
        para = self._make_elem('w:p')
        if style_id or alignment or num or indent:
            ppr = self._add_elem(para, 'w:pPr')
            if style_id:
                self._add_elem(ppr, 'w:pStyle', {'w:val': style_id})
            if num:
                num_pr = self._add_elem(ppr, 'w:numPr')
                self._add_elem(num_pr, 'w:ilvl', {'w:val': num[1]})
                self._add_elem(num_pr, 'w:numId', {'w:val': num[0]})
            if indent:
                self._add_elem(ppr, 'w:ind', {'w:left': indent})
            if alignment:
                self._add_elem(ppr, 'w:jc', {'w:val': alignment})
        return para

    def _create_run_elem(self, formats=frozenset(), char_style=None):
        run = self._make_elem('w:r')
        if formats or char_style:
            rpr = self._add_elem(run, 'w:rPr')
            if char_style:
                self._add_elem(rpr, 'w:rStyle', {'w:val': char_style})
            if 'BOLD' in formats:
                self._add_elem(rpr, 'w:b')
            if 'ITALIC' in formats:
                self._add_elem(rpr, 'w:i')
            if 'STRIKE' in formats:
                self._add_elem(rpr, 'w:strike')
            if 'UNDERLINE' in formats:
                self._add_elem(rpr, 'w:u', {'w:val': 'single'})
        return run

    def _create_text_run_elem(self, text, formats=frozenset(), char_style=None):
        run = self._create_run_elem(formats, char_style)
        self._add_text(run, text)
        return run

    def _current_para_style(self):
        return 'Quote' if self._quote_depth else None

    def _current_indent(self):
        if self._quote_depth > 1:
            return self.config.BLOCKQUOTE_LEFT_INDENT * self._quote_depth
        return None

    # --- Block Handlers ---

    def _process_blocks(self, blocks, body):
        if not isinstance(blocks, list):
            raise PackageStructureError(f"Expected a list of blocks, got {type(blocks).__name__}")

        for block in blocks:
            if not isinstance(block, dict) or 't' not in block:
                raise PackageStructureError(f"Invalid block: {block!r}")

            b_type = block['t']
            b_content = block.get('c')

            if b_type == 'Header':
                body.append(self._handle_header(b_content))
            elif b_type in ('Para', 'Plain'):
                body.append(self._handle_para(b_content))
            elif b_type == 'BulletList':
                self._handle_list(b_content, body, ordered=False)
            elif b_type == 'OrderedList':
                self._handle_list(b_content[1], body, ordered=True, start=b_content[0][0])
            elif b_type == 'CodeBlock':
                body.append(self._handle_code_block(b_content))
            elif b_type == 'Table':
                body.append(self._handle_table(b_content))
            elif b_type == 'BlockQuote':
                self._handle_blockquote(b_content, body)
            elif b_type == 'HorizontalRule':
                body.append(self._create_para_elem('HorizontalRule'))
            elif b_type == 'RawBlock':
                self._warn("Raw %s block omitted from document", b_content[0])
            else:
                raise PackageStructureError(f"Unsupported block type: {b_type}")

    def _bookmark_for(self, anchor):
        """Unique Word bookmark name for an anchor.

        Distinct anchors can map to the same name (non-ASCII text, the length
        limit), so later ones get a numeric suffix.
        """
        anchor = anchor.lstrip('#')
        name = self._bookmarks.get(anchor)
        if name is not None:
            return name
        limit = self.config.BOOKMARK_NAME_MAX
        base = bookmark_name(anchor, limit)
        name, n = base, 1
        while name in self._bookmark_names:
            suffix = f'_{n}'
            name = base[:limit - len(suffix)].rstrip('_') + suffix
            n += 1
        self._bookmark_names.add(name)
        self._bookmarks[anchor] = name
        return name

    def _handle_header(self, content):
        level, attr, inlines = content
        if not 1 <= level <= 6:
            raise PackageStructureError(f"Heading level out of range: {level}")

        para = self._create_para_elem(f'Heading{level}')
        anchor = attr[0]
        # Only the first heading with a given anchor gets the bookmark
        if anchor and anchor not in self._bookmarked_anchors:
            self._bookmarked_anchors.add(anchor)
            name = self._bookmark_for(anchor)
            bookmark_id = str(self._bookmark_id)
            self._bookmark_id += 1
            self._add_elem(para, 'w:bookmarkStart', {'w:id': bookmark_id, 'w:name': name})
            self._process_inlines(inlines, para)
            self._add_elem(para, 'w:bookmarkEnd', {'w:id': bookmark_id})
        else:
            self._process_inlines(inlines, para)
        return para

    def _handle_para(self, inlines, num=None, style_id=None, indent=None):
        style_id = style_id or self._current_para_style()
        indent = indent or self._current_indent()

        # A paragraph holding only an image is centered, like a figure
        alignment = None
        if inlines and len(inlines) == 1 and inlines[0].get('t') == 'Image':
            alignment = 'center'
        para = self._create_para_elem(style_id, alignment=alignment, num=num, indent=indent)
        self._process_inlines(inlines, para)
        return para

    def _handle_code_block(self, content):
        attr, code = content
        para = self._create_para_elem('Code', indent=self._current_indent())
        run = self._create_run_elem()
        for i, line in enumerate(code.split('\n')):
            if i:
                self._add_elem(run, 'w:br')
            if line:
                self._add_text(run, line)
        para.append(run)
        return para

    def _handle_blockquote(self, blocks, body):
        if self._quote_depth >= self.config.MAX_NESTING_DEPTH:
            self._warn("Block quote nesting depth limit reached (%d). Flattening.", self.config.MAX_NESTING_DEPTH)
            self._process_blocks(blocks, body)
            return
        self._quote_depth += 1
        try:
            self._process_blocks(blocks, body)
        finally:
            self._quote_depth -= 1

    def _new_ordered_num(self, ilvl, start):
        num_id = self._next_num_id
        self._next_num_id += 1
        self._ordered_nums.append((num_id, ilvl, start))
        return num_id

    def _handle_list(self, items, body, ordered, start=1):
        level = self._list_depth
        if level >= self.config.MAX_NESTING_DEPTH:
            self._warn("List nesting depth limit reached (%d). Flattening.", self.config.MAX_NESTING_DEPTH)
            level = self.config.MAX_NESTING_DEPTH - 1
        ilvl = min(level, 8)
        num_id = self._new_ordered_num(ilvl, start) if ordered else 1
        item_indent = self.config.LIST_INDENT_PER_LEVEL * (ilvl + 1)

        self._list_depth += 1
        try:
            for item_blocks in items:
                first = True
                for block in item_blocks:
                    b_type = block.get('t')
                    if b_type in ('Para', 'Plain'):
                        if first:
                            body.append(self._handle_para(block['c'], num=(num_id, ilvl), style_id='ListParagraph'))
                        else:
                            body.append(self._handle_para(block['c'], style_id='ListParagraph', indent=item_indent))
                    else:
                        if first:
                            # Keep the item marker even when the item opens with a non-text block
                            body.append(self._create_para_elem('ListParagraph', num=(num_id, ilvl)))
                        self._process_blocks([block], body)
                    first = False
                if first:
                    body.append(self._create_para_elem('ListParagraph', num=(num_id, ilvl)))
        finally:
            self._list_depth -= 1

    def _handle_table(self, content):
        aligns, header, rows = content
        col_count = len(header)
        if col_count == 0:
            raise PackageStructureError("Table has no columns")
        rule = self.bundle['table']

        tbl = self._make_elem('w:tbl')
        tbl_pr = self._add_elem(tbl, 'w:tblPr')
        self._add_elem(tbl_pr, 'w:tblStyle', {'w:val': 'TableGrid'})
        self._add_elem(tbl_pr, 'w:tblW', {'w:w': 5000, 'w:type': 'pct'})
        self._add_elem(tbl_pr, 'w:tblLook', {'w:val': '04A0', 'w:firstRow': 1, 'w:noHBand': 0})

        grid = self._add_elem(tbl, 'w:tblGrid')
        col_width = self._content_width_twips() // col_count
        for _ in range(col_count):
            self._add_elem(grid, 'w:gridCol', {'w:w': col_width})

        def add_row(cells, is_header, shade):
            tr = self._add_elem(tbl, 'w:tr')
            if is_header:
                self._add_elem(self._add_elem(tr, 'w:trPr'), 'w:tblHeader')
            for col_idx, cell in enumerate(cells):
                tc = self._add_elem(tr, 'w:tc')
                tc_pr = self._add_elem(tc, 'w:tcPr')
                self._add_elem(tc_pr, 'w:tcW', {'w:w': col_width, 'w:type': 'dxa'})
                if shade:
                    self._add_elem(tc_pr, 'w:shd', {'w:val': 'clear', 'w:color': 'auto', 'w:fill': shade})
                align = aligns[col_idx] if col_idx < len(aligns) else None
                para = self._create_para_elem(alignment=ALIGNMENTS.get(align) if align else None)
                formats = frozenset({'BOLD'}) if is_header and rule.get('header_bold') else frozenset()
                self._process_inlines(cell, para, formats)
                tc.append(para)

        add_row(header, True, rule.get('header_background'))
        for row_idx, row in enumerate(rows):
            shade = rule.get('alternate_row_shading') if row_idx % 2 == 1 else None
            add_row(row, False, shade)
        return tbl

    # --- Inline Handlers ---

    def _process_inlines(self, inlines, parent, active_formats=frozenset(), char_style=None):
        """Append runs for ``inlines`` to ``parent`` (a paragraph or hyperlink).

        Adjacent text with identical formatting is merged into one run.
        """
        if not isinstance(inlines, list):
            raise PackageStructureError(f"Expected a list of inlines, got {type(inlines).__name__}")

        pending = []

        def flush():
            if pending:
                parent.append(self._create_text_run_elem(''.join(pending), active_formats, char_style))
                pending.clear()

        for item in inlines:
            i_type = item.get('t')
            i_content = item.get('c')

            if i_type == 'Str':
                pending.append(i_content)
            elif i_type in ('Space', 'SoftBreak'):
                pending.append(' ')
            elif i_type in ('Strong', 'Emph', 'Underline', 'Strikeout'):
                flush()
                fmt = {'Strong': 'BOLD', 'Emph': 'ITALIC', 'Underline': 'UNDERLINE', 'Strikeout': 'STRIKE'}[i_type]
                self._process_inlines(i_content, parent, active_formats | {fmt}, char_style)
            elif i_type == 'Code':
                flush()
                parent.append(self._create_text_run_elem(i_content[1], active_formats, 'VerbatimChar'))
            elif i_type == 'LineBreak':
                flush()
                run = self._create_run_elem(active_formats, char_style)
                self._add_elem(run, 'w:br')
                parent.append(run)
            elif i_type == 'Link':
                flush()
                self._handle_link(i_content, parent, active_formats)
            elif i_type == 'Image':
                flush()
                parent.append(self._handle_image(i_content))
            elif i_type == 'RawInline':
                pending.append(i_content[1])
        flush()

    def _handle_link(self, content, parent, active_formats):
        attr, text_inlines, (target, _title) = content
        classes = attr[1] if attr else []
        href = dict(attr[2]).get('href') if attr and len(attr) > 2 else None
        resolved = self.links.get(href)
        if resolved is not None:
            invalid, internal = not resolved.is_valid, resolved.is_internal
        else:
            invalid, internal = 'invalid' in classes, 'internal' in classes

        if not self.options.preserve_links or invalid or not target:
            style = 'Hyperlink' if self.options.preserve_links is False else None
            self._process_inlines(text_inlines, parent, active_formats, style)
            return

        if target.startswith('#'):
            link = self._add_elem(parent, 'w:hyperlink', {
                'w:anchor': self._bookmark_for(target),
                'w:history': 1,
            })
            self.counters['internal_link_count'] += 1
        else:
            rid = self.rels.add('hyperlink', target, external=True)
            link = self._add_elem(parent, 'w:hyperlink', {'r:id': rid, 'w:history': 1})
            if internal:
                self.counters['internal_link_count'] += 1
            else:
                self.counters['external_link_count'] += 1
        self._process_inlines(text_inlines, link, active_formats, 'Hyperlink')

    def _content_width_twips(self):
        page_w, _page_h = self._page_size()
        margins = self._margins()
        return max(1440, page_w - margins['left'] - margins['right'])

    def _image_placeholder(self, alt):
        return self._create_text_run_elem(f"[Image: {alt}]", frozenset({'ITALIC'}))

    def _handle_image(self, content):
        """Embed an image or diagram; returns a run element."""
        _attr, alt_inlines, (target, _title) = content
        alt = plain_text(alt_inlines) or os.path.basename(target)

        diagram_match = DIAGRAM_REF_RE.match(target)
        if diagram_match and diagram_match.group('id') in self.diagrams:
            diagram = self.diagrams[diagram_match.group('id')]
            key = ('diagram', diagram.id)
            if key not in self.media_by_source:
                part = f'media/{diagram.file_name}'
                self.media[part] = diagram.image_bytes
                rid = self.rels.add('image', part)
                self.media_by_source[key] = (rid, diagram.width, diagram.height)
                self.counters['diagram_count'] += 1
            rid, width, height = self.media_by_source[key]
            return self._create_drawing_run(rid, width, height, alt)

        if re.match(r'^[a-zA-Z][a-zA-Z0-9+.-]*://', target) or target.startswith('data:'):
            self._warn("Remote image not embedded: %s", target)
            return self._image_placeholder(alt)

        key = ('file', target)
        if key not in self.media_by_source:
            loaded = self._load_local_image(target)
            if loaded is None:
                return self._image_placeholder(alt)
            data, ext, width, height = loaded
            self.counters['image_count'] += 1
            part = f"media/image{self.counters['image_count']}.{ext}"
            self.media[part] = data
            rid = self.rels.add('image', part)
            self.media_by_source[key] = (rid, width, height)
        rid, width, height = self.media_by_source[key]
        return self._create_drawing_run(rid, width, height, alt)

    @staticmethod
    def _validate_image_path(image_path, base_dir=None):
        """Validate that an image path does not traverse outside allowed directories.

        Raises:
            SecurityError: If the path is absolute or escapes ``base_dir``
        """
        if os.path.isabs(image_path):
            raise SecurityError(f"Absolute image paths are not allowed: {image_path}")

        normalized = os.path.normpath(image_path)
        parts = normalized.replace('\\', '/').split('/')
        if '..' in parts:
            raise SecurityError(f"Directory traversal in image path is not allowed: {image_path}")

        if base_dir:
            resolved = os.path.normpath(os.path.join(base_dir, image_path))
            base_resolved = os.path.normpath(base_dir)
            if not resolved.startswith(base_resolved + os.sep) and resolved != base_resolved:
                raise SecurityError(f"Image path resolves outside input directory: {image_path}")

    def _load_local_image(self, target):
        """Read and normalize a local image.

        Returns:
            (bytes, extension, width_px, height_px), or None with a warning
        """
        try:
            self._validate_image_path(target, self.options.base_dir)
        except SecurityError as e:
            self._warn("Skipping image with invalid path: %s", e.message)
            return None

        if self.counters['image_count'] >= self.config.MAX_IMAGE_COUNT:
            self._warn("Image count limit reached (%d). Skipping image: %s", self.config.MAX_IMAGE_COUNT, target)
            return None

        path = os.path.join(self.options.base_dir, target) if self.options.base_dir else target
        if not os.path.isfile(path):
            self._warn("Image not found: %s", target)
            return None

        output = self.options.output_options
        try:
            with Image.open(path) as im:
                width, height = im.size
                fmt = (im.format or '').lower()
                if fmt in ('jpeg', 'jpg') and output.optimize_size:
                    buf = io.BytesIO()
                    im.convert('RGB').save(buf, format='JPEG', quality=output.image_quality, optimize=True)
                    return buf.getvalue(), 'jpeg', width, height
                if fmt in IMAGE_CONTENT_TYPES and not (fmt == 'png' and output.optimize_size):
                    with open(path, 'rb') as f:
                        return f.read(), fmt, width, height
                # Formats Word does not embed natively are stored as PNG
                buf = io.BytesIO()
                im.save(buf, format='PNG', optimize=output.optimize_size)
                return buf.getvalue(), 'png', width, height
        except OSError as e:
            self._warn("Unreadable image %s: %s", target, e)
            return None

    def _create_drawing_run(self, rid, width_px, height_px, alt):
        max_px = min(self.config.IMAGE_MAX_WIDTH_PX, int(self._content_width_twips() / 1440 * 96))
        width_px = width_px or self.config.IMAGE_DEFAULT_WIDTH_PX
        height_px = height_px or self.config.IMAGE_DEFAULT_HEIGHT_PX
        if width_px > max_px:
            height_px = height_px * max_px / width_px
            width_px = max_px
        cx = str(int(width_px * self.config.EMU_PER_PX))
        cy = str(int(height_px * self.config.EMU_PER_PX))

        self._docpr_id += 1
        run = self._make_elem('w:r')
        drawing = self._add_elem(run, 'w:drawing')
        inline = self._add_elem(drawing, 'wp:inline', {'distT': 0, 'distB': 0, 'distL': 0, 'distR': 0})
        self._add_elem(inline, 'wp:extent', {'cx': cx, 'cy': cy})
        self._add_elem(inline, 'wp:effectExtent', {'l': 0, 't': 0, 'r': 0, 'b': 0})
        self._add_elem(inline, 'wp:docPr', {'id': self._docpr_id, 'name': f'Picture {self._docpr_id}', 'descr': alt})
        frame = self._add_elem(inline, 'wp:cNvGraphicFramePr')
        self._add_elem(frame, 'a:graphicFrameLocks', {'noChangeAspect': 1})
        graphic = self._add_elem(inline, 'a:graphic')
        data = self._add_elem(graphic, 'a:graphicData', {'uri': NAMESPACES['pic']})
        pic = self._add_elem(data, 'pic:pic')
        nv = self._add_elem(pic, 'pic:nvPicPr')
        self._add_elem(nv, 'pic:cNvPr', {'id': 0, 'name': f'Picture {self._docpr_id}', 'descr': alt})
        self._add_elem(nv, 'pic:cNvPicPr')
        fill = self._add_elem(pic, 'pic:blipFill')
        self._add_elem(fill, 'a:blip', {'r:embed': rid})
        self._add_elem(self._add_elem(fill, 'a:stretch'), 'a:fillRect')
        sp_pr = self._add_elem(pic, 'pic:spPr')
        xfrm = self._add_elem(sp_pr, 'a:xfrm')
        self._add_elem(xfrm, 'a:off', {'x': 0, 'y': 0})
        self._add_elem(xfrm, 'a:ext', {'cx': cx, 'cy': cy})
        self._add_elem(self._add_elem(sp_pr, 'a:prstGeom', {'prst': 'rect'}), 'a:avLst')
        return run

    # --- Table of Contents ---

    def _build_toc(self, body):
        toc = generate_table_of_contents(self.model.sections)
        entries = list(toc.iter_entries())
        if not entries:
            return toc
        heading = self._create_para_elem('TOCHeading')
        heading.append(self._create_text_run_elem(toc.title))
        body.append(heading)
        for entry in entries:
            para = self._create_para_elem(f'TOC{min(entry.level, 6)}')
            link = self._add_elem(para, 'w:hyperlink', {
                'w:anchor': self._bookmark_for(entry.anchor),
                'w:history': 1,
            })
            link.append(self._create_text_run_elem(entry.title, char_style='Hyperlink'))
            body.append(para)
        # Page break so the document starts on a fresh page
        run = self._add_elem(self._add_elem(body, 'w:p'), 'w:r')
        self._add_elem(run, 'w:br', {'w:type': 'page'})
        return toc

    # --- Section / Parts ---

    def _page_size(self):
        width, height = self.config.PAGE_WIDTH, self.config.PAGE_HEIGHT
        if self.options.orientation == 'landscape':
            return height, width
        return width, height

    def _margins(self):
        if self.options.margins is not None:
            return self.options.margins.as_dict()
        return dict(self.bundle.get('page', {}).get('margins') or self.config.PAGE_MARGIN_DEFAULT)

    def _has_header(self):
        return bool(self.bundle.get('header_text'))

    def _has_footer(self):
        return bool(self.bundle.get('page_numbers'))

    def _build_sect_pr(self, body):
        sect = self._add_elem(body, 'w:sectPr')
        if self._has_header():
            rid = self.rels.add('header', 'header1.xml')
            self._add_elem(sect, 'w:headerReference', {'w:type': 'default', 'r:id': rid})
        if self._has_footer():
            rid = self.rels.add('footer', 'footer1.xml')
            self._add_elem(sect, 'w:footerReference', {'w:type': 'default', 'r:id': rid})
        width, height = self._page_size()
        size = {'w:w': width, 'w:h': height}
        if self.options.orientation == 'landscape':
            size['w:orient'] = 'landscape'
        self._add_elem(sect, 'w:pgSz', size)
        margins = self._margins()
        self._add_elem(sect, 'w:pgMar', {
            'w:top': margins['top'], 'w:right': margins['right'],
            'w:bottom': margins['bottom'], 'w:left': margins['left'],
            'w:header': self.config.HEADER_FOOTER_DISTANCE,
            'w:footer': self.config.HEADER_FOOTER_DISTANCE, 'w:gutter': 0,
        })

    def _build_header(self):
        root = self._make_elem('w:hdr')
        para = self._create_para_elem('Header')
        para.append(self._create_text_run_elem(self.bundle['header_text']))
        root.append(para)
        return self._to_bytes(root)

    def _build_footer(self):
        root = self._make_elem('w:ftr')
        para = self._create_para_elem('Footer')
        para.append(self._create_text_run_elem('Page '))
        for i, instr in enumerate((' PAGE ', ' NUMPAGES ')):
            if i:
                para.append(self._create_text_run_elem(' of '))
            field = self._add_elem(para, 'w:fldSimple', {'w:instr': instr})
            field.append(self._create_text_run_elem('1'))
        root.append(para)
        return self._to_bytes(root)

    def _build_numbering(self):
        root = self._make_elem('w:numbering')
        bullets = self.config.LIST_BULLET_CHARS
        ordered_formats = ('decimal', 'lowerLetter', 'lowerRoman')

        for abstract_id, kind in ((0, 'bullet'), (1, 'ordered')):
            abstract = self._add_elem(root, 'w:abstractNum', {'w:abstractNumId': abstract_id})
            self._add_elem(abstract, 'w:multiLevelType', {'w:val': 'hybridMultilevel'})
            for ilvl in range(9):
                lvl = self._add_elem(abstract, 'w:lvl', {'w:ilvl': ilvl})
                self._add_elem(lvl, 'w:start', {'w:val': 1})
                if kind == 'bullet':
                    self._add_elem(lvl, 'w:numFmt', {'w:val': 'bullet'})
                    self._add_elem(lvl, 'w:lvlText', {'w:val': bullets[ilvl % len(bullets)]})
                else:
                    self._add_elem(lvl, 'w:numFmt', {'w:val': ordered_formats[ilvl % 3]})
                    self._add_elem(lvl, 'w:lvlText', {'w:val': f'%{ilvl + 1}.'})
                self._add_elem(lvl, 'w:lvlJc', {'w:val': 'left'})
                ppr = self._add_elem(lvl, 'w:pPr')
                self._add_elem(ppr, 'w:ind', {
                    'w:left': self.config.LIST_INDENT_PER_LEVEL * (ilvl + 1),
                    'w:hanging': self.config.LIST_HANGING_INDENT,
                })

        num = self._add_elem(root, 'w:num', {'w:numId': 1})
        self._add_elem(num, 'w:abstractNumId', {'w:val': 0})
        for num_id, ilvl, start in self._ordered_nums:
            num = self._add_elem(root, 'w:num', {'w:numId': num_id})
            self._add_elem(num, 'w:abstractNumId', {'w:val': 1})
            override = self._add_elem(num, 'w:lvlOverride', {'w:ilvl': ilvl})
            self._add_elem(override, 'w:startOverride', {'w:val': start})
        return self._to_bytes(root)

    def _build_settings(self):
        root = self._make_elem('w:settings')
        self._add_elem(root, 'w:zoom', {'w:percent': 100})
        self._add_elem(root, 'w:defaultTabStop', {'w:val': 720})
        self._add_elem(root, 'w:characterSpacingControl', {'w:val': 'doNotCompress'})
        return self._to_bytes(root)

    def _build_core_properties(self):
        o = self.options
        root = self._make_elem('cp:coreProperties')
        if o.title:
            self._add_elem(root, 'dc:title', text=o.title)
        if o.subject:
            self._add_elem(root, 'dc:subject', text=o.subject)
        if o.author:
            self._add_elem(root, 'dc:creator', text=o.author)
            self._add_elem(root, 'cp:lastModifiedBy', text=o.author)
        if o.keywords:
            self._add_elem(root, 'cp:keywords', text=', '.join(o.keywords))
        if o.description:
            self._add_elem(root, 'dc:description', text=o.description)
        now = datetime.datetime.now(datetime.timezone.utc).replace(microsecond=0)
        created = o.created_at or now
        if created.tzinfo is None:
            created = created.replace(tzinfo=datetime.timezone.utc)
        def stamp(d):
            return d.astimezone(datetime.timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')

        self._add_elem(root, 'dcterms:created', {'xsi:type': 'dcterms:W3CDTF'}, stamp(created))
        self._add_elem(root, 'dcterms:modified', {'xsi:type': 'dcterms:W3CDTF'}, stamp(now))
        return self._to_bytes(root)

    def _build_app_properties(self, word_count):
        root = self._make_elem('ep:Properties')
        self._add_elem(root, 'ep:Application', text='md2docx')
        self._add_elem(root, 'ep:Pages', text=self.counters['page_count'])
        self._add_elem(root, 'ep:Words', text=word_count)
        return self._to_bytes(root)

    def _build_content_types(self, parts):
        root = ET.Element(f'{{{NS_CONTENT_TYPES}}}Types')
        ET.SubElement(root, f'{{{NS_CONTENT_TYPES}}}Default', {
            'Extension': 'rels', 'ContentType': 'application/vnd.openxmlformats-package.relationships+xml',
        })
        ET.SubElement(root, f'{{{NS_CONTENT_TYPES}}}Default', {'Extension': 'xml', 'ContentType': 'application/xml'})
        extensions = sorted({name.rsplit('.', 1)[1] for name in self.media})
        for ext in extensions:
            ET.SubElement(root, f'{{{NS_CONTENT_TYPES}}}Default', {
                'Extension': ext, 'ContentType': IMAGE_CONTENT_TYPES[ext],
            })
        for part in parts:
            ET.SubElement(root, f'{{{NS_CONTENT_TYPES}}}Override', {
                'PartName': part, 'ContentType': CONTENT_TYPES[part],
            })
        return ET.tostring(root, encoding='UTF-8', xml_declaration=True)

    def _estimate_pages(self, word_count):
        return max(1, math.ceil(word_count / self.config.WORDS_PER_PAGE))

    # --- Entry Points ---

    def build_parts(self):
        """Build every package part.

        Returns:
            Ordered dict of part name -> bytes, ``[Content_Types].xml`` first

        Raises:
            PackageStructureError: If the tree cannot be represented
        """
        document = self._make_elem('w:document')
        body = self._add_elem(document, 'w:body')

        if self.options.toc_generation:
            self._build_toc(body)
        self._process_blocks(self.model.blocks, body)
        self._build_sect_pr(body)

        word_count = sum(len(block_text(b).split()) for b in iter_blocks(self.model.blocks)
                         if b.get('t') not in ('BulletList', 'OrderedList', 'BlockQuote'))
        self.counters['page_count'] = self._estimate_pages(word_count)

        word_parts = {
            'word/document.xml': self._to_bytes(document),
            'word/styles.xml': self._build_styles(),
            'word/numbering.xml': self._build_numbering(),
            'word/settings.xml': self._build_settings(),
        }
        if self._has_header():
            word_parts['word/header1.xml'] = self._build_header()
        if self._has_footer():
            word_parts['word/footer1.xml'] = self._build_footer()
        for name, data in self.media.items():
            word_parts[f'word/{name}'] = data
        word_parts['word/_rels/document.xml.rels'] = self.rels.to_xml()

        package_rels = RelationshipRegistry()
        package_rels.add('document', 'word/document.xml')
        doc_props = {'docProps/app.xml': self._build_app_properties(word_count)}
        package_rels.add('app', 'docProps/app.xml')
        if self.options.include_metadata:
            doc_props['docProps/core.xml'] = self._build_core_properties()
            package_rels.add('core', 'docProps/core.xml')

        overrides = [f'/{name}' for name in list(word_parts) + list(doc_props) if f'/{name}' in CONTENT_TYPES]
        parts = {'[Content_Types].xml': self._build_content_types(overrides), '_rels/.rels': package_rels.to_xml()}
        parts.update(doc_props)
        parts.update(word_parts)
        return parts

    def to_bytes(self):
        """Serialize the model to DOCX bytes.

        Raises:
            PackageStructureError: On any structural failure
        """
        try:
            with self.context.stage('serialize'):
                parts = self.build_parts()
                compression = zipfile.ZIP_DEFLATED if self.options.output_options.compress else zipfile.ZIP_STORED
                buf = io.BytesIO()
                with zipfile.ZipFile(buf, 'w', compression) as out_zip:
                    for name, data in parts.items():
                        out_zip.writestr(name, data)
        except PackageStructureError:
            logger.error("DOCX creation failed", exc_info=True)
            raise
        except (ET.ParseError, KeyError, IndexError, TypeError, ValueError, zipfile.BadZipFile) as e:
            logger.error("DOCX creation failed: %s", e, exc_info=True)
            raise PackageStructureError(f"Could not build DOCX package: {e}") from e

        data = buf.getvalue()
        logger.info(
            "Built DOCX package: %d bytes, %d images, %d diagrams",
            len(data), self.counters['image_count'], self.counters['diagram_count'],
        )
        return data

    @staticmethod
    def serialize(model, diagrams=(), links=(), bundle=None, options=None, config=None, context=None):
        """Convert a DocumentModel to DOCX bytes.

        Args:
            model: DocumentModel from the document builder
            diagrams: ProcessedDiagram list referenced by ``mermaid-<id>.png`` images
            links: ProcessedLink list; decides link kind and validity when given
            bundle: Style bundle; the template named in ``options`` when None
            options: MarkdownToDocxOptions

        Returns:
            DOCX package bytes
        """
        return MarkdownToDocx(model, diagrams, links, bundle, options, config, context).to_bytes()
