import base64
import io
import logging
import os
import posixpath
import re
import zipfile
import xml.etree.ElementTree as ET

from PIL import Image

from .anchors import slugify
from .config import DEFAULT_CONFIG
from .context import ConversionContext
from .exceptions import PackageStructureError, UnknownStyleMappingError
from .link_resolver import generate_table_of_contents, toc_markdown
from .markdown_writer import MarkdownWriter
from .models import DocumentModel, build_section_tree, plain_text
from .options import DocxToMarkdownOptions
from .styles import StyleKind, resolve_style_semantic

logger = logging.getLogger('md2docx')

NS = {
    'w': 'http://schemas.openxmlformats.org/wordprocessingml/2006/main',
    'r': 'http://schemas.openxmlformats.org/officeDocument/2006/relationships',
    'wp': 'http://schemas.openxmlformats.org/drawingml/2006/wordprocessingDrawing',
    'a': 'http://schemas.openxmlformats.org/drawingml/2006/main',
    'pkg': 'http://schemas.openxmlformats.org/package/2006/relationships',
    'cp': 'http://schemas.openxmlformats.org/package/2006/metadata/core-properties',
    'dc': 'http://purl.org/dc/elements/1.1/',
}

MONOSPACE_FONTS = {
    'consolas', 'courier', 'courier new', 'jetbrains mono', 'cascadia code', 'cascadia mono',
    'source code pro', 'menlo', 'monaco', 'lucida console', 'fira code', 'dejavu sans mono',
}
_FALSE_VALUES = ('0', 'false', 'off', 'none')
_HYPERLINK_FIELD_RE = re.compile(r'HYPERLINK\s+"([^"]+)"(?:\s+\\l\s+"([^"]+)")?')
_JC_ALIGN = {'left': 'left', 'start': 'left', 'center': 'center', 'right': 'right', 'end': 'right'}
_MIME_EXT = {'png': 'png', 'jpeg': 'jpg', 'jpg': 'jpg', 'gif': 'gif', 'bmp': 'bmp', 'emf': 'emf', 'wmf': 'wmf'}


def _w(tag):
    return f"{{{NS['w']}}}{tag}"


def _wval(elem, default=None):
    if elem is None:
        return default
    return elem.get(_w('val'), default)


def _is_on(elem):
    """Toggle properties (w:b, w:i) are on unless their val says otherwise."""
    return elem is not None and (_wval(elem) or 'true').lower() not in _FALSE_VALUES


def _text_to_inlines(text):
    result = []
    parts = text.split(' ')
    for i, part in enumerate(parts):
        if part:
            result.append({"t": "Str", "c": part})
        if i < len(parts) - 1:
            result.append({"t": "Space"})
    return result


class _ListBuilder:
    """Rebuilds nested Bullet/OrderedList blocks from flat numbered paragraphs."""

    def __init__(self, output):
        self.output = output
        self.stack = []  # frames: {'level', 'ordered', 'items'}

    @property
    def is_open(self):
        return bool(self.stack)

    def close(self):
        self.stack = []

    def add_item(self, level, ordered, blocks, start=1):
        while self.stack and self.stack[-1]['level'] > level:
            self.stack.pop()
        if self.stack and self.stack[-1]['level'] == level and self.stack[-1]['ordered'] != ordered:
            self.stack.pop()

        if not self.stack or self.stack[-1]['level'] < level:
            items = []
            if ordered:
                block = {"t": "OrderedList", "c": [[start, {"t": "Decimal"}, {"t": "Period"}], items]}
            else:
                block = {"t": "BulletList", "c": items}
            if self.stack:
                parent = self.stack[-1]['items']
                if not parent:
                    parent.append([])
                parent[-1].append(block)
            else:
                self.output.append(block)
            self.stack.append({'level': level, 'ordered': ordered, 'items': items})

        self.stack[-1]['items'].append(list(blocks))

    def add_to_current_item(self, block):
        items = self.stack[-1]['items']
        if not items:
            items.append([])
        items[-1].append(block)


class DocxToMarkdown:
    """Read a DOCX package back into a DocumentModel and Markdown.

    Recognized paragraph styles map to headings, lists, code, quotes and
    captions through the style registry. Paragraphs in unrecognized styles
    become plain paragraphs with one warning per style.
    """

    def __init__(self, options=None, config=None, context=None):
        self.options = options or DocxToMarkdownOptions()
        self.config = config if config is not None else DEFAULT_CONFIG
        self.context = context or ConversionContext(config=self.config)
        self._reset()

    def _reset(self):
        self.warnings = []
        self.style_names = {}
        self.monospace_styles = set()
        self.numbering = {}
        self.num_starts = {}
        self.rels = {}
        self.bookmarks = {}
        self.image_count = 0
        self.extracted_images = []
        self._zip = None
        self._unknown_styles = set()
        self._omitted_images = 0
        self._media_cache = {}

    def _warn(self, message, *args):
        text = message % args if args else message
        logger.warning("%s", text)
        self.warnings.append(text)

    # --- Package Parts ---

    def _read_xml(self, name, required=False):
        try:
            data = self._zip.read(name)
        except KeyError:
            if required:
                raise PackageStructureError(f"Missing required part: {name}", details={'part': name})
            return None
        try:
            return ET.fromstring(data)
        except ET.ParseError as e:
            raise PackageStructureError(f"Malformed XML in {name}: {e}", details={'part': name}) from e

    def _load_styles(self):
        root = self._read_xml('word/styles.xml')
        if root is None:
            return
        for style in root.iter(_w('style')):
            style_id = style.get(_w('styleId'))
            name = _wval(style.find('w:name', NS))
            if style_id:
                self.style_names[style_id] = name
            fonts = style.find('w:rPr/w:rFonts', NS)
            if fonts is not None and (fonts.get(_w('ascii')) or '').lower() in MONOSPACE_FONTS:
                self.monospace_styles.add(style_id)

    def _load_numbering(self):
        root = self._read_xml('word/numbering.xml')
        if root is None:
            return
        abstract = {}
        for abs_num in root.findall('w:abstractNum', NS):
            levels = {}
            for lvl in abs_num.findall('w:lvl', NS):
                ilvl = int(lvl.get(_w('ilvl'), '0'))
                levels[ilvl] = (
                    _wval(lvl.find('w:numFmt', NS), 'decimal'),
                    int(_wval(lvl.find('w:start', NS), '1')),
                )
            abstract[abs_num.get(_w('abstractNumId'))] = levels
        for num in root.findall('w:num', NS):
            num_id = num.get(_w('numId'))
            levels = dict(abstract.get(_wval(num.find('w:abstractNumId', NS)), {}))
            for override in num.findall('w:lvlOverride', NS):
                start = override.find('w:startOverride', NS)
                if start is not None:
                    ilvl = int(override.get(_w('ilvl'), '0'))
                    fmt = levels.get(ilvl, ('decimal', 1))[0]
                    levels[ilvl] = (fmt, int(_wval(start, '1')))
            self.numbering[num_id] = levels

    def _load_rels(self):
        root = self._read_xml('word/_rels/document.xml.rels')
        if root is None:
            return
        for rel in root.findall('pkg:Relationship', NS):
            self.rels[rel.get('Id')] = {
                'type': rel.get('Type', '').rsplit('/', 1)[-1],
                'target': rel.get('Target', ''),
                'external': rel.get('TargetMode') == 'External',
            }

    def _load_core_properties(self):
        root = self._read_xml('docProps/core.xml')
        if root is None:
            return {}
        metadata = {}
        for key, path in (('title', 'dc:title'), ('author', 'dc:creator'), ('subject', 'dc:subject'),
                          ('description', 'dc:description'), ('keywords', 'cp:keywords')):
            elem = root.find(path, NS)
            if elem is not None and elem.text:
                metadata[key] = elem.text.strip()
        return metadata

    # --- Paragraph Semantics ---

    def _paragraph_style(self, para):
        return _wval(para.find('w:pPr/w:pStyle', NS))

    def _semantic(self, style_id):
        semantic = resolve_style_semantic(style_id, self.style_names.get(style_id))
        if semantic.is_unknown and style_id not in self._unknown_styles:
            self._unknown_styles.add(style_id)
            error = UnknownStyleMappingError(f"Unknown style '{style_id}' treated as a plain paragraph")
            self._warn("%s (%s)", error.message, error.code)
        return semantic

    def _list_info(self, para):
        num_pr = para.find('w:pPr/w:numPr', NS)
        if num_pr is None:
            return None
        num_id = _wval(num_pr.find('w:numId', NS))
        if not num_id or num_id == '0':
            return None
        ilvl = int(_wval(num_pr.find('w:ilvl', NS), '0'))
        fmt, start = self.numbering.get(num_id, {}).get(ilvl, ('bullet', 1))
        return ilvl, fmt != 'bullet', start

    def _collect_bookmarks(self, body):
        """Map heading bookmark names to the anchors their heading text produces."""
        for para in body.iter(_w('p')):
            semantic = resolve_style_semantic(self._paragraph_style(para),
                                              self.style_names.get(self._paragraph_style(para)))
            if semantic.kind not in (StyleKind.HEADING, StyleKind.TITLE, StyleKind.SUBTITLE):
                continue
            text = ''.join(t.text or '' for t in para.iter(_w('t')))
            for mark in para.iter(_w('bookmarkStart')):
                name = mark.get(_w('name'))
                if name and not name.startswith('_'):
                    self.bookmarks[name] = slugify(text)

    # --- Runs and Inlines ---

    def _run_formats(self, run):
        rpr = run.find('w:rPr', NS)
        formats = set()
        if rpr is None:
            return formats
        style = _wval(rpr.find('w:rStyle', NS))
        fonts = rpr.find('w:rFonts', NS)
        if style in self.monospace_styles or (style or '').lower() in ('verbatimchar', 'sourcecode', 'htmlcode') or (
                fonts is not None and (fonts.get(_w('ascii')) or '').lower() in MONOSPACE_FONTS):
            formats.add('CODE')
        if _is_on(rpr.find('w:b', NS)):
            formats.add('BOLD')
        if _is_on(rpr.find('w:i', NS)):
            formats.add('ITALIC')
        if _is_on(rpr.find('w:strike', NS)) or _is_on(rpr.find('w:dstrike', NS)):
            formats.add('STRIKE')
        underline = rpr.find('w:u', NS)
        if underline is not None and (_wval(underline) or 'single') != 'none' and style != 'Hyperlink':
            formats.add('UNDERLINE')
        return formats

    def _segments(self, container):
        """Flatten runs into ``(formats, text)`` segments and inline objects.

        Complex ``HYPERLINK`` fields are turned into links; field codes
        themselves are skipped.
        """
        out = []
        field = None

        def emit(item):
            if field is not None and field['state'] == 'result':
                field['result'].append(item)
            else:
                out.append(item)

        for child in container:
            tag = child.tag
            if tag == _w('r'):
                formats = frozenset(self._run_formats(child))
                for node in child:
                    ntag = node.tag
                    if ntag == _w('fldChar'):
                        kind = node.get(_w('fldCharType'))
                        if kind == 'begin':
                            field = {'state': 'instr', 'instr': '', 'result': []}
                        elif kind == 'separate' and field is not None:
                            field['state'] = 'result'
                        elif kind == 'end' and field is not None:
                            finished, field = field, None
                            out.extend(self._finish_field(finished))
                    elif ntag == _w('instrText'):
                        if field is not None:
                            field['instr'] += node.text or ''
                    elif ntag == _w('t'):
                        emit((formats, node.text or ''))
                    elif ntag in (_w('tab'), _w('noBreakHyphen')):
                        emit((formats, '\t' if ntag == _w('tab') else '-'))
                    elif ntag in (_w('br'), _w('cr')):
                        if node.get(_w('type')) not in ('page', 'column'):
                            emit({"t": "LineBreak"})
                    elif ntag == _w('drawing'):
                        image = self._handle_drawing(node)
                        if image is not None:
                            emit(image)
            elif tag == _w('hyperlink'):
                link = self._handle_hyperlink(child)
                if link is not None:
                    emit(link)
            elif tag in (_w('fldSimple'), _w('smartTag'), _w('ins')):
                for item in self._segments(child):
                    emit(item)
            elif tag == _w('sdt'):
                content = child.find('w:sdtContent', NS)
                if content is not None:
                    for item in self._segments(content):
                        emit(item)
        return out

    def _finish_field(self, field):
        inlines = self._segments_to_inlines(field['result'])
        match = _HYPERLINK_FIELD_RE.search(field['instr'])
        if match and self.options.preserve_links:
            url = match.group(1) if not match.group(2) else f'{match.group(1)}#{match.group(2)}'
            return [{"t": "Link", "c": [["", [], []], inlines, [url, ""]]}]
        return inlines

    def _segments_to_inlines(self, segments):
        """Merge adjacent text with identical formatting into inline dicts."""
        inlines = []
        buffer_formats = None
        buffer = []

        def flush():
            if buffer:
                inlines.extend(self._formatted_text(''.join(buffer), buffer_formats))
                buffer.clear()

        for seg in segments:
            if isinstance(seg, tuple):
                formats, text = seg
                if formats != buffer_formats:
                    flush()
                    buffer_formats = formats
                buffer.append(text.replace('\t', ' '))
            else:
                flush()
                buffer_formats = None
                inlines.append(seg)
        flush()
        return inlines

    def _formatted_text(self, text, formats):
        if not text:
            return []
        if 'CODE' in formats:
            return [{"t": "Code", "c": [["", [], []], text]}]
        inlines = _text_to_inlines(text)
        for fmt, kind in (('UNDERLINE', 'Underline'), ('STRIKE', 'Strikeout'),
                          ('ITALIC', 'Emph'), ('BOLD', 'Strong')):
            if fmt in formats:
                inlines = [{"t": kind, "c": inlines}]
        return inlines

    def _paragraph_inlines(self, para):
        return self._segments_to_inlines(self._segments(para))

    def _handle_hyperlink(self, elem):
        inlines = self._segments_to_inlines(self._segments(elem))
        if not self.options.preserve_links:
            return {"t": "Span", "c": inlines}

        anchor = elem.get(_w('anchor'))
        rid = elem.get(f"{{{NS['r']}}}id")
        url = None
        if rid and rid in self.rels:
            url = self.rels[rid]['target']
            if not re.match(r'^[a-zA-Z][a-zA-Z0-9+.-]*:', url):
                # Relative document links point back at Markdown sources
                path, sep, frag = url.partition('#')
                if path.lower().endswith('.docx'):
                    path = path[:-5] + '.md'
                url = path + sep + frag
            if anchor:
                url = f'{url}#{self._anchor_slug(anchor)}'
        elif anchor:
            url = f'#{self._anchor_slug(anchor)}'
        if not url:
            return {"t": "Span", "c": inlines}
        return {"t": "Link", "c": [["", [], []], inlines, [url, ""]]}

    def _anchor_slug(self, bookmark):
        if bookmark in self.bookmarks:
            return self.bookmarks[bookmark]
        name = bookmark[2:] if bookmark.startswith('h_') else bookmark
        return slugify(name.replace('_', '-'))

    # --- Images ---

    def _handle_drawing(self, drawing):
        blip = drawing.find('.//a:blip', NS)
        if blip is None:
            return None
        rid = blip.get(f"{{{NS['r']}}}embed")
        rel = self.rels.get(rid)
        if rel is None or rel['external']:
            self._warn("Image relationship %s not found", rid)
            return None

        doc_pr = drawing.find('.//wp:docPr', NS)
        alt = (doc_pr.get('descr') or doc_pr.get('name') or '') if doc_pr is not None else ''
        part = posixpath.normpath(posixpath.join('word', rel['target'])).lstrip('/')
        if rel['target'].startswith('/'):
            part = rel['target'].lstrip('/')

        src = self._image_source(part)
        if src is None:
            return None
        return {"t": "Image", "c": [["", [], []], _text_to_inlines(alt or 'Image'), [src, ""]]}

    def _image_source(self, part):
        if part in self._media_cache:
            return self._media_cache[part]
        try:
            data = self._zip.read(part)
        except KeyError:
            self._warn("Image part missing from package: %s", part)
            return None

        ext = _MIME_EXT.get(part.rsplit('.', 1)[-1].lower(), 'png')
        o = self.options
        if o.extract_images:
            src = self._extract_image(data, ext)
        elif o.inline_images:
            mime = 'image/jpeg' if ext == 'jpg' else f'image/{ext}'
            src = f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"
        else:
            self._omitted_images += 1
            src = None
        self._media_cache[part] = src
        return src

    def _extract_image(self, data, ext):
        """Queue an image for writing as ``image_<n>.<ext>`` and return its path."""
        target_ext = self.options.image_format
        if target_ext == 'svg' or target_ext == ext or ext not in ('png', 'jpg', 'gif', 'bmp'):
            if target_ext != ext:
                logger.debug("Keeping %s image as-is (cannot convert to %s)", ext, target_ext)
            target_ext = ext
        else:
            try:
                with Image.open(io.BytesIO(data)) as im:
                    buf = io.BytesIO()
                    if target_ext == 'jpg':
                        im.convert('RGB').save(buf, format='JPEG', quality=self.options.output_options.image_quality)
                    else:
                        im.save(buf, format='PNG', optimize=self.options.output_options.optimize_size)
                    data = buf.getvalue()
            except OSError as e:
                # Unreadable image data is written unchanged
                self._warn("Could not convert image to %s: %s", target_ext, e)
                target_ext = ext

        self.image_count += 1
        file_name = f'image_{self.image_count}.{target_ext}'
        out_dir = self.options.image_output_dir or 'images'
        self.extracted_images.append((os.path.join(out_dir, file_name), data))

        # The Markdown file is expected to sit next to the image directory
        folder = posixpath.basename(out_dir.replace('\\', '/').rstrip('/')) or 'images'
        return f'./{folder}/{file_name}'

    def save_extracted_images(self):
        """Write queued images to disk, creating the output directory."""
        for path, data in self.extracted_images:
            os.makedirs(os.path.dirname(path) or '.', exist_ok=True)
            with open(path, 'wb') as f:
                f.write(data)
        if self.extracted_images:
            logger.info("Extracted %d images to %s", len(self.extracted_images),
                        self.options.image_output_dir or 'images')

    # --- Blocks ---

    def _handle_table(self, tbl):
        rows = []
        aligns = []
        for row_idx, tr in enumerate(tbl.findall('w:tr', NS)):
            cells = []
            for tc in tr.findall('w:tc', NS):
                cell_inlines = []
                for p_idx, para in enumerate(tc.iter(_w('p'))):
                    inlines = self._paragraph_inlines(para)
                    if p_idx and inlines and cell_inlines:
                        cell_inlines.append({"t": "LineBreak"})
                    cell_inlines.extend(inlines)
                    if row_idx == 0 and p_idx == 0:
                        aligns.append(_JC_ALIGN.get(_wval(para.find('w:pPr/w:jc', NS))))
                cells.append(cell_inlines)
            rows.append(cells)
        if not rows:
            return None
        header = rows[0]
        aligns = (aligns + [None] * len(header))[:len(header)]
        body = []
        for row in rows[1:]:
            row = row[:len(header)]
            row.extend([] for _ in range(len(header) - len(row)))
            body.append(row)
        return {"t": "Table", "c": [aligns, header, body]}

    def _walk_body(self, container, blocks):
        lists = _ListBuilder(blocks)
        code_lines = None
        quote_blocks = None

        def flush_code():
            nonlocal code_lines
            if code_lines is not None:
                blocks.append({"t": "CodeBlock", "c": [["", [], []], '\n'.join(code_lines)]})
                code_lines = None

        def flush_quote():
            nonlocal quote_blocks
            if quote_blocks is not None:
                blocks.append({"t": "BlockQuote", "c": quote_blocks})
                quote_blocks = None

        for child in container:
            tag = child.tag
            if tag == _w('sdt'):
                content = child.find('w:sdtContent', NS)
                if content is not None:
                    flush_code()
                    flush_quote()
                    lists.close()
                    self._walk_body(content, blocks)
                continue
            if tag == _w('tbl'):
                flush_code()
                flush_quote()
                lists.close()
                table = self._handle_table(child)
                if table is not None:
                    blocks.append(table)
                continue
            if tag != _w('p'):
                continue

            style_id = self._paragraph_style(child)
            semantic = self._semantic(style_id) if style_id else resolve_style_semantic(None)
            kind = semantic.kind

            if kind is StyleKind.CODE:
                flush_quote()
                lists.close()
                text = plain_text(self._paragraph_inlines(child))
                code_lines = (code_lines or []) + [text]
                continue
            flush_code()

            if kind in (StyleKind.TOC_HEADING, StyleKind.TOC_ENTRY):
                continue

            inlines = self._paragraph_inlines(child)
            list_info = self._list_info(child)

            if kind is StyleKind.HORIZONTAL_RULE or (
                    not inlines and child.find('w:pPr/w:pBdr/w:bottom', NS) is not None):
                flush_quote()
                lists.close()
                blocks.append({"t": "HorizontalRule"})
                continue

            if list_info is not None or kind in (StyleKind.LIST_BULLET, StyleKind.LIST_NUMBER):
                flush_quote()
                if list_info is None:
                    list_info = (semantic.level, kind is StyleKind.LIST_NUMBER, 1)
                level, ordered, start = list_info
                lists.add_item(level, ordered, [{"t": "Plain", "c": inlines}] if inlines else [], start)
                continue

            if not inlines:
                # Empty paragraphs are spacing only
                continue

            if kind is StyleKind.LIST_PARAGRAPH and lists.is_open:
                lists.add_to_current_item({"t": "Para", "c": inlines})
                continue
            lists.close()

            if kind in (StyleKind.HEADING, StyleKind.TITLE, StyleKind.SUBTITLE):
                flush_quote()
                level = max(1, min(semantic.level, 6))
                anchor = slugify(plain_text(inlines))
                blocks.append({"t": "Header", "c": [level, [anchor, [], []], inlines]})
            elif kind is StyleKind.QUOTE:
                quote_blocks = (quote_blocks or []) + [{"t": "Para", "c": inlines}]
            elif kind is StyleKind.CAPTION:
                flush_quote()
                blocks.append({"t": "Para", "c": [{"t": "Emph", "c": inlines}]})
            else:
                flush_quote()
                blocks.append({"t": "Para", "c": inlines})

        flush_code()
        flush_quote()
        return blocks

    @staticmethod
    def _unwrap_spans(blocks):
        """Replace Span inlines (links dropped by options) with their content."""
        def fix(inlines):
            out = []
            for item in inlines:
                if item.get('t') == 'Span':
                    out.extend(fix(item['c']))
                    continue
                t = item.get('t')
                if t in ('Strong', 'Emph', 'Underline', 'Strikeout'):
                    item = {"t": t, "c": fix(item['c'])}
                elif t in ('Link', 'Image'):
                    item = {"t": t, "c": [item['c'][0], fix(item['c'][1]), item['c'][2]]}
                out.append(item)
            return out

        for block in blocks:
            t = block.get('t')
            c = block.get('c')
            if t in ('Para', 'Plain'):
                block['c'] = fix(c)
            elif t == 'Header':
                c[2] = fix(c[2])
            elif t == 'Table':
                c[1] = [fix(cell) for cell in c[1]]
                c[2] = [[fix(cell) for cell in row] for row in c[2]]
            elif t == 'BulletList':
                for item in c:
                    DocxToMarkdown._unwrap_spans(item)
            elif t == 'OrderedList':
                for item in c[1]:
                    DocxToMarkdown._unwrap_spans(item)
            elif t == 'BlockQuote':
                DocxToMarkdown._unwrap_spans(c)
        return blocks

    # --- Entry Points ---

    def deserialize(self, package_bytes):
        """Read a DOCX package into a DocumentModel.

        Args:
            package_bytes: Raw .docx content

        Returns:
            (DocumentModel, warnings)

        Raises:
            PackageStructureError: If the package is not a readable DOCX
        """
        self._reset()
        try:
            self._zip = zipfile.ZipFile(io.BytesIO(package_bytes), 'r')
        except zipfile.BadZipFile as e:
            raise PackageStructureError(f"Not a valid DOCX package: {e}") from e

        try:
            with self.context.stage('deserialize'):
                document = self._read_xml('word/document.xml', required=True)
                body = document.find('w:body', NS)
                if body is None:
                    raise PackageStructureError("word/document.xml has no body")
                self._load_styles()
                self._load_numbering()
                self._load_rels()
                metadata = self._load_core_properties()
                self._collect_bookmarks(body)

                blocks = self._unwrap_spans(self._walk_body(body, []))
        finally:
            self._zip.close()
            self._zip = None

        if self._omitted_images:
            self._warn("%d images omitted (enable extract_images or inline_images to keep them)",
                       self._omitted_images)

        model = DocumentModel(blocks=blocks, sections=build_section_tree(blocks), metadata=metadata)
        logger.debug("Deserialized %d blocks, %d images", len(blocks), self.image_count)
        return model, list(self.warnings)

    def to_markdown(self, model):
        """Render a DocumentModel as Markdown text."""
        writer = MarkdownWriter(
            hard_line_breaks=self.options.preserve_formatting,
            underline_html=self.options.preserve_formatting,
        )
        metadata = model.metadata if self.options.include_metadata else None
        preamble = None
        if self.options.toc_generation and model.sections:
            preamble = toc_markdown(generate_table_of_contents(model.sections))
        return writer.write(model.blocks, metadata, preamble)

    @staticmethod
    def convert(package_bytes, options=None, config=None, context=None):
        """Convert DOCX bytes to Markdown.

        Returns:
            (markdown_text, DocumentModel, warnings, image_count)
        """
        converter = DocxToMarkdown(options, config, context)
        model, warnings = converter.deserialize(package_bytes)
        text = converter.to_markdown(model)
        if converter.options.extract_images:
            converter.save_extracted_images()
        return text, model, warnings, converter.image_count
