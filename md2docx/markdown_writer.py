"""
Render Pandoc-like block dicts back to Markdown (GFM flavour).
"""

import re

import frontmatter

_ESCAPE_RE = re.compile(r'([\\`*_\[\]])')
_BLOCK_START_RE = re.compile(r'^(#{1,6}\s|>|[-+*]\s|\d+[.)]\s)')


class MarkdownWriter:
    """Turns a block list into Markdown text.

    Args:
        hard_line_breaks: Emit ``LineBreak`` as a trailing-two-space hard
            break instead of a plain newline
        underline_html: Keep underline as ``<u>...</u>``; Markdown has no
            native underline, so it is dropped otherwise
    """

    def __init__(self, hard_line_breaks=False, underline_html=False):
        self.hard_line_breaks = hard_line_breaks
        self.underline_html = underline_html

    def write(self, blocks, metadata=None, preamble=None):
        """Markdown for ``blocks``, with optional front matter and a leading ``preamble``."""
        body = self.blocks_to_markdown(blocks)
        if preamble:
            body = f'{preamble}\n\n{body}' if body else preamble
        if metadata:
            post = frontmatter.Post(body, **metadata)
            return frontmatter.dumps(post) + '\n'
        return body + '\n' if body else ''

    def blocks_to_markdown(self, blocks):
        rendered = [self.block_to_markdown(block) for block in blocks]
        return '\n\n'.join(text for text in rendered if text is not None)

    def block_to_markdown(self, block):
        t = block.get('t')
        c = block.get('c')

        if t == 'Header':
            return '#' * c[0] + ' ' + self.inlines_to_markdown(c[2]).strip()
        if t in ('Para', 'Plain'):
            text = self.inlines_to_markdown(c).strip()
            if _BLOCK_START_RE.match(text):
                text = '\\' + text
            return text
        if t == 'CodeBlock':
            return self._code_block(c)
        if t == 'BulletList':
            return self._list(c, ordered=False)
        if t == 'OrderedList':
            return self._list(c[1], ordered=True, start=c[0][0])
        if t == 'BlockQuote':
            inner = self.blocks_to_markdown(c)
            return '\n'.join(('> ' + line) if line else '>' for line in inner.split('\n'))
        if t == 'Table':
            return self._table(c)
        if t == 'HorizontalRule':
            return '---'
        if t == 'RawBlock':
            return c[1]
        return None

    def _code_block(self, content):
        attr, code = content
        lang = attr[1][0] if attr and attr[1] else ''
        fence = '```'
        while fence in code:
            fence += '`'
        return f'{fence}{lang}\n{code}\n{fence}'

    def _list(self, items, ordered, start=1):
        lines = []
        for idx, item_blocks in enumerate(items):
            marker = f'{start + idx}. ' if ordered else '- '
            pad = ' ' * len(marker)
            body = self.blocks_to_markdown(item_blocks) if item_blocks else ''
            # Nested lists hug their parent item; other blocks need a blank line
            body_lines = body.split('\n')
            lines.append(marker + body_lines[0])
            lines.extend((pad + line) if line else '' for line in body_lines[1:])
        text = '\n'.join(lines)
        return re.sub(r'\n\n(\s*(?:[-+*]|\d+\.) )', r'\n\1', text)

    def _table(self, content):
        aligns, header, rows = content
        cols = len(header)

        def cell_text(cell):
            return self.inlines_to_markdown(cell).replace('|', '\\|').replace('\n', ' ').strip()

        def separator(align):
            return {'left': ':---', 'center': ':---:', 'right': '---:'}.get(align, '---')

        lines = ['| ' + ' | '.join(cell_text(cell) for cell in header) + ' |']
        lines.append('| ' + ' | '.join(separator(aligns[i] if i < len(aligns) else None) for i in range(cols)) + ' |')
        for row in rows:
            cells = [cell_text(cell) for cell in row[:cols]]
            cells.extend('' for _ in range(cols - len(cells)))
            lines.append('| ' + ' | '.join(cells) + ' |')
        return '\n'.join(lines)

    @staticmethod
    def _wrap(text, marker, closing=None):
        """Wrap text in emphasis markers, keeping edge spaces outside."""
        if not text.strip():
            return text
        stripped = text.strip(' ')
        lead = text[:len(text) - len(text.lstrip(' '))]
        trail = text[len(text.rstrip(' ')):]
        return f'{lead}{marker}{stripped}{closing or marker}{trail}'

    def inlines_to_markdown(self, inlines):
        out = []
        for item in inlines or []:
            t = item.get('t')
            c = item.get('c')
            if t == 'Str':
                out.append(_ESCAPE_RE.sub(r'\\\1', c))
            elif t in ('Space', 'SoftBreak'):
                out.append(' ')
            elif t == 'LineBreak':
                out.append('  \n' if self.hard_line_breaks else '\n')
            elif t == 'Strong':
                out.append(self._wrap(self.inlines_to_markdown(c), '**'))
            elif t == 'Emph':
                out.append(self._wrap(self.inlines_to_markdown(c), '*'))
            elif t == 'Strikeout':
                out.append(self._wrap(self.inlines_to_markdown(c), '~~'))
            elif t == 'Underline':
                inner = self.inlines_to_markdown(c)
                out.append(self._wrap(inner, '<u>', '</u>') if self.underline_html else inner)
            elif t == 'Code':
                code = c[1]
                ticks = '`'
                while ticks in code:
                    ticks += '`'
                pad = ' ' if code.startswith('`') or code.endswith('`') else ''
                out.append(f'{ticks}{pad}{code}{pad}{ticks}')
            elif t == 'Link':
                text = self.inlines_to_markdown(c[1])
                url, title = c[2]
                title_part = f' "{title}"' if title else ''
                out.append(f'[{text}]({self._url(url)}{title_part})')
            elif t == 'Image':
                alt = self.inlines_to_markdown(c[1])
                out.append(f'![{alt}]({self._url(c[2][0])})')
            elif t == 'RawInline':
                out.append(c[1])
        return ''.join(out)

    @staticmethod
    def _url(url):
        if ' ' in url or '(' in url or ')' in url:
            return f'<{url}>'
        return url
