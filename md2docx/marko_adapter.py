from __future__ import annotations

import logging
from typing import Union

from marko import Markdown

logger = logging.getLogger('md2docx')


class MarkoBlockParser:
    """Converts Marko AST to the Pandoc-like block dicts used by md2docx."""

    _TASK_MARKERS = {True: '☒ ', False: '☐ '}

    def __init__(self):
        # GFM adds tables, strikethrough, task lists and bare URL autolinks
        self.md = Markdown(extensions=['gfm'])

    def parse(self, markdown_text: str) -> list:
        """Parse Markdown and return the list of block dicts."""
        doc = self.md.parse(markdown_text)
        blocks = []
        for child in doc.children:
            block = self._convert_block(child)
            if block:
                blocks.append(block)
        return blocks

    def _convert_block(self, element) -> Union[dict, None]:
        """Convert a Marko block element to a block dict."""
        elem_type = type(element).__name__

        if elem_type in ('Heading', 'SetextHeading'):
            return self._convert_heading(element)
        elif elem_type == 'Paragraph':
            return self._convert_paragraph(element)
        elif elem_type == 'List':
            return self._convert_list(element)
        elif elem_type in ('FencedCode', 'CodeBlock'):
            return self._convert_code(element)
        elif elem_type == 'Table':
            return self._convert_table(element)
        elif elem_type == 'Quote':
            return self._convert_blockquote(element)
        elif elem_type == 'ThematicBreak':
            return {"t": "HorizontalRule"}
        elif elem_type == 'HTMLBlock':
            body = getattr(element, 'body', None) or getattr(element, 'children', '')
            return {"t": "RawBlock", "c": ["html", body if isinstance(body, str) else '']}
        elif elem_type in ('BlankLine', 'LinkRefDef'):
            return None

        logger.debug("Skipping unsupported block type: %s", elem_type)
        return None

    def _convert_heading(self, elem) -> dict:
        """Heading -> {"t": "Header", "c": [level, [id, [], []], inlines]}"""
        inlines = self._convert_children_to_inlines(elem.children)
        level = getattr(elem, 'level', 1)
        return {"t": "Header", "c": [level, ["", [], []], inlines]}

    def _convert_paragraph(self, elem) -> dict:
        inlines = self._convert_children_to_inlines(elem.children)
        checked = getattr(elem, 'checked', None)
        if checked is not None:
            inlines.insert(0, {"t": "Str", "c": self._TASK_MARKERS[bool(checked)]})
        return {"t": "Para", "c": inlines}

    def _convert_list(self, elem) -> dict:
        """List -> BulletList or OrderedList"""
        items = []
        for item in elem.children:
            item_blocks = []
            for child in item.children:
                block = self._convert_block(child)
                if block:
                    item_blocks.append(block)
            items.append(item_blocks)

        if getattr(elem, 'ordered', False):
            # OrderedList: [[start, style, delim], items]
            start = getattr(elem, 'start', 1) or 1
            return {"t": "OrderedList", "c": [[start, {"t": "Decimal"}, {"t": "Period"}], items]}
        return {"t": "BulletList", "c": items}

    def _convert_code(self, elem) -> dict:
        """FencedCode / indented CodeBlock -> {"t": "CodeBlock", "c": [[id, classes, attrs], code]}"""
        lang = getattr(elem, 'lang', '') or ''
        code = ''
        for child in elem.children:
            code += child.children if hasattr(child, 'children') else str(child)
        if code.endswith('\n'):
            code = code[:-1]
        return {"t": "CodeBlock", "c": [["", [lang] if lang else [], []], code]}

    def _convert_table(self, elem) -> Union[dict, None]:
        """Table -> {"t": "Table", "c": [aligns, header_cells, rows]}

        The first row is the header. Cells are inline lists; alignments are
        ``left``, ``center``, ``right`` or None.
        """
        rows = []
        for child in elem.children:
            # Older marko versions wrap rows in TableHead/TableBody
            if type(child).__name__ in ('TableHead', 'TableBody'):
                rows.extend(child.children)
            else:
                rows.append(child)
        if not rows:
            return None

        header_row = rows[0]
        aligns = [getattr(cell, 'align', None) for cell in header_row.children]
        header = [self._convert_children_to_inlines(cell.children) for cell in header_row.children]
        body = []
        for row in rows[1:]:
            cells = [self._convert_children_to_inlines(cell.children) for cell in row.children]
            # Pad short rows so every row has one cell per column
            cells.extend([] for _ in range(len(header) - len(cells)))
            body.append(cells[:len(header)])
        return {"t": "Table", "c": [aligns, header, body]}

    def _convert_blockquote(self, elem) -> dict:
        blocks = []
        for child in elem.children:
            block = self._convert_block(child)
            if block:
                blocks.append(block)
        return {"t": "BlockQuote", "c": blocks}

    def _convert_children_to_inlines(self, children) -> list:
        """Convert Marko inline children to an inline list."""
        if children is None:
            return []
        if isinstance(children, str):
            return self._convert_raw_text(children)

        result = []
        for child in children:
            inlines = self._convert_inline(child)
            if isinstance(inlines, list):
                result.extend(inlines)
            elif inlines:
                result.append(inlines)
        return result

    def _convert_inline(self, elem):
        """Convert a Marko inline element to an inline dict."""
        elem_type = type(elem).__name__

        if elem_type in ('RawText', 'Literal'):
            return self._convert_raw_text(elem.children)
        elif elem_type == 'Emphasis':
            return {"t": "Emph", "c": self._convert_children_to_inlines(elem.children)}
        elif elem_type == 'StrongEmphasis':
            return {"t": "Strong", "c": self._convert_children_to_inlines(elem.children)}
        elif elem_type == 'Strikethrough':
            return {"t": "Strikeout", "c": self._convert_children_to_inlines(elem.children)}
        elif elem_type in ('Link', 'Image'):
            inlines = self._convert_children_to_inlines(elem.children)
            dest = getattr(elem, 'dest', '') or ''
            title = getattr(elem, 'title', '') or ''
            return {"t": elem_type, "c": [["", [], []], inlines, [dest, title]]}
        elif elem_type in ('AutoLink', 'Url'):
            dest = getattr(elem, 'dest', '') or ''
            text = self._convert_children_to_inlines(elem.children) or [{"t": "Str", "c": dest}]
            return {"t": "Link", "c": [["", [], []], text, [dest, ""]]}
        elif elem_type == 'CodeSpan':
            return {"t": "Code", "c": [["", [], []], getattr(elem, 'children', '')]}
        elif elem_type == 'LineBreak':
            # marko uses one element for both; soft breaks render as spaces
            return {"t": "SoftBreak"} if getattr(elem, 'soft', False) else {"t": "LineBreak"}
        elif elem_type == 'InlineHTML':
            return {"t": "RawInline", "c": ["html", getattr(elem, 'children', '')]}

        if isinstance(elem, str):
            return self._convert_raw_text(elem)
        if hasattr(elem, 'children'):
            return self._convert_children_to_inlines(elem.children)
        return None

    def _convert_raw_text(self, text: str) -> list:
        """Convert raw text to Str and Space tokens."""
        if not text:
            return []

        result = []
        parts = text.split(' ')
        for i, part in enumerate(parts):
            if part:
                result.append({"t": "Str", "c": part})
            if i < len(parts) - 1:
                result.append({"t": "Space"})
        return result
