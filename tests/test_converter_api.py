"""Tests for the high-level MarkdownDocxConverter API."""

from __future__ import annotations

import pytest

from conftest import FakeBackend, part_names, read_part, rewrite_parts
from md2docx.converter_api import MarkdownDocxConverter, convert_string
from md2docx.exceptions import ConversionCancelledError

DOC = """---
title: Front Matter Title
---

# Overview

See [details](#details) and [site](https://example.com).

```mermaid
graph TD
  A-->B
```

## Details

Some text.
"""


@pytest.fixture
def converter() -> MarkdownDocxConverter:
    return MarkdownDocxConverter(backend_factory=lambda options, scratch_dir: FakeBackend())


class TestMarkdownToDocx:
    """Tests for markdown_to_docx."""

    def test_success(self, converter) -> None:
        result = converter.markdown_to_docx(DOC)
        assert result.success
        assert result.error is None
        assert 'word/document.xml' in part_names(result.output)
        meta = result.metadata
        assert meta.diagram_count == 1
        assert meta.internal_link_count == 1
        assert meta.external_link_count == 1
        assert meta.page_count == 1
        assert meta.output_size == len(result.output)
        assert meta.processing_time_ms >= 0

    def test_front_matter_fills_title(self, converter) -> None:
        result = converter.markdown_to_docx(DOC)
        core = read_part(result.output, 'docProps/core.xml').decode('utf-8')
        assert '<dc:title>Front Matter Title</dc:title>' in core

    def test_explicit_title_beats_front_matter(self, converter) -> None:
        result = converter.markdown_to_docx(DOC, {'title': 'Explicit'})
        core = read_part(result.output, 'docProps/core.xml').decode('utf-8')
        assert '<dc:title>Explicit</dc:title>' in core

    @pytest.mark.parametrize("content", ["", "   \n\t"])
    def test_empty_input(self, converter, content) -> None:
        result = converter.markdown_to_docx(content)
        assert not result.success
        assert result.output is None
        assert result.error.code == 'EMPTY_INPUT'

    def test_unknown_template(self, converter) -> None:
        result = converter.markdown_to_docx("# Hi\n", {'template': 'nope'})
        assert not result.success
        assert result.error.code == 'INVALID_TEMPLATE'

    def test_unknown_theme(self, converter) -> None:
        result = converter.markdown_to_docx("# Hi\n", {'mermaidTheme': 'neon'})
        assert result.error.code == 'INVALID_TEMPLATE'

    def test_unknown_renderer_backend(self) -> None:
        result = MarkdownDocxConverter().markdown_to_docx("# Hi\n", {'renderer_backend': 'browser'})
        assert result.error.code == 'INVALID_OPTIONS'

    @pytest.mark.parametrize("options", [
        {'createdAt': 'not a date'},
        {'orientation': 'sideways'},
        {'margins': {'top': 1, 'gutter': 2}},
    ])
    def test_bad_option_values(self, converter, options) -> None:
        result = converter.markdown_to_docx("# T\n", options)
        assert not result.success
        assert result.error.code == 'INVALID_OPTIONS'

    def test_failed_diagram_is_warning(self) -> None:
        converter = MarkdownDocxConverter(
            backend_factory=lambda options, scratch_dir: FakeBackend(fail_on='graph'),
        )
        result = converter.markdown_to_docx(DOC)
        assert result.success
        assert result.metadata.diagram_count == 0
        assert result.warnings == [
            "Mermaid diagram 1 could not be rendered (DIAGRAM_RENDER_FAILED): syntax error in diagram"
        ]

    def test_backend_receives_options(self) -> None:
        seen = []

        def factory(options, scratch_dir):
            seen.append((options.mermaid_theme, scratch_dir))
            return FakeBackend()

        MarkdownDocxConverter(backend_factory=factory).markdown_to_docx(DOC, {'mermaid_theme': 'dark'})
        assert len(seen) == 1
        assert seen[0][0] == 'dark'

    def test_default_options_apply(self) -> None:
        converter = MarkdownDocxConverter(default_options={'template': 'professional-report'})
        result = converter.markdown_to_docx("# Hi\n")
        assert 'word/header1.xml' in part_names(result.output)

    def test_repeated_calls_are_independent(self, converter) -> None:
        first = converter.markdown_to_docx(DOC)
        second = converter.markdown_to_docx(DOC)
        assert first.metadata.diagram_count == second.metadata.diagram_count == 1
        assert first.warnings == second.warnings == []


class TestDocxToMarkdown:
    """Tests for docx_to_markdown."""

    def test_round_trip(self, converter) -> None:
        package = converter.markdown_to_docx("# Title\n\nHello world.\n").output
        result = converter.docx_to_markdown(package, {'include_metadata': False})
        assert result.success
        assert result.output == "# Title\n\nHello world.\n"
        assert result.metadata.page_count == 1
        assert result.metadata.image_count == 0

    def test_corrupt_package(self, converter) -> None:
        result = converter.docx_to_markdown(b'PK\x03\x04 broken')
        assert not result.success
        assert result.error.code == 'PACKAGE_STRUCTURE_ERROR'

    def test_bad_image_format(self, converter) -> None:
        package = converter.markdown_to_docx("# T\n").output
        result = converter.docx_to_markdown(package, {'image_format': 'tiff'})
        assert result.error.code == 'INVALID_OPTIONS'

    def test_unexpected_fault_becomes_error(self, converter) -> None:
        package = converter.markdown_to_docx("- a\n- b\n").output
        broken = rewrite_parts(
            package,
            lambda name, data: data.replace(b'<w:ilvl w:val="0"', b'<w:ilvl w:val="x"', 1)
            if name == 'word/document.xml' else data,
        )
        result = converter.docx_to_markdown(broken)
        assert not result.success
        assert result.error.code == 'CONVERSION_FAILED'

    def test_to_dict(self, converter) -> None:
        package = converter.markdown_to_docx("# T\n").output
        data = converter.docx_to_markdown(package).to_dict()
        assert data['success'] is True
        assert 'output' in data
        assert 'error' not in data


class TestFiles:
    """Tests for the file and batch entry points."""

    def test_markdown_file(self, converter, tmp_path, png_bytes) -> None:
        (tmp_path / 'pic.png').write_bytes(png_bytes)
        src = tmp_path / 'doc.md'
        src.write_text("# Doc\n\n![pic](pic.png)\n", encoding='utf-8')
        out = tmp_path / 'out' / 'doc.docx'

        result = converter.markdown_file_to_docx(str(src), str(out))
        assert result.success
        assert out.is_file()
        assert 'word/media/image1.png' in part_names(out.read_bytes())

    def test_missing_markdown_file(self, converter, tmp_path) -> None:
        result = converter.markdown_file_to_docx(str(tmp_path / 'nope.md'), str(tmp_path / 'x.docx'))
        assert not result.success
        assert result.error.code == 'FILE_CONVERSION_FAILED'

    def test_wrong_extension(self, converter, tmp_path) -> None:
        src = tmp_path / 'notes.txt'
        src.write_text("# Notes\n", encoding='utf-8')
        result = converter.markdown_file_to_docx(str(src), str(tmp_path / 'x.docx'))
        assert result.error.code == 'FILE_CONVERSION_FAILED'
        assert not (tmp_path / 'x.docx').exists()

    def test_docx_file_to_markdown(self, converter, tmp_path) -> None:
        docx = tmp_path / 'in.docx'
        docx.write_bytes(converter.markdown_to_docx("# In\n").output)
        out = tmp_path / 'in.md'
        result = converter.docx_file_to_markdown(str(docx), str(out), {'include_metadata': False})
        assert result.success
        assert out.read_text(encoding='utf-8') == "# In\n"

    def test_batch_isolates_failures(self, converter, tmp_path) -> None:
        files = []
        for name in ('a.md', 'b.md'):
            path = tmp_path / name
            path.write_text(f"# {name}\n", encoding='utf-8')
            files.append(str(path))
        files.insert(1, str(tmp_path / 'missing.md'))
        calls = []

        items = converter.batch_markdown_to_docx(files, str(tmp_path / 'out'),
                                                 progress=lambda done, total: calls.append((done, total)))
        assert len(items) == 3
        assert [item.result.success for item in items] == [True, False, True]
        assert items[1].result.error.code == 'FILE_CONVERSION_FAILED'
        assert calls == [(1, 3), (2, 3), (3, 3)]
        assert (tmp_path / 'out' / 'a.docx').is_file()
        assert (tmp_path / 'out' / 'b.docx').is_file()

    def test_batch_same_base_name_not_overwritten(self, converter, tmp_path) -> None:
        files = []
        for folder in ('one', 'two'):
            path = tmp_path / folder / 'notes.md'
            path.parent.mkdir()
            path.write_text(f"# {folder}\n", encoding='utf-8')
            files.append(str(path))

        items = converter.batch_markdown_to_docx(files, str(tmp_path / 'out'))
        assert all(item.result.success for item in items)
        assert items[0].output.endswith('notes.docx')
        assert items[0].output != items[1].output
        assert len(list((tmp_path / 'out').iterdir())) == 2

    def test_batch_cancelled_between_items(self, tmp_path) -> None:
        files = []
        for name in ('a.md', 'b.md'):
            path = tmp_path / name
            path.write_text("# x\n", encoding='utf-8')
            files.append(str(path))
        converter = MarkdownDocxConverter(cancel_check=lambda: True)
        with pytest.raises(ConversionCancelledError):
            converter.batch_markdown_to_docx(files, str(tmp_path / 'out'))
        assert (tmp_path / 'out' / 'a.docx').is_file()
        assert not (tmp_path / 'out' / 'b.docx').exists()

    def test_convert_string(self, tmp_path) -> None:
        out = tmp_path / 'str.docx'
        result = convert_string("# From a string\n", str(out))
        assert result.success
        assert out.read_bytes() == result.output


class TestInspection:
    """Tests for validate_markdown and get_conversion_stats."""

    def test_validate_clean(self, converter) -> None:
        result = converter.validate_markdown("# Title\n\n[ok](https://example.com)\n")
        assert result.is_valid
        assert result.warnings == []

    def test_validate_reports_problems(self, converter) -> None:
        result = converter.validate_markdown("plain\n\n[bad](http//example.com)\n")
        assert not result.is_valid
        codes = [(w.code, w.line) for w in result.warnings]
        assert codes == [('NO_HEADINGS', None), ('MALFORMED_LINK', 3)]

    def test_validate_reference_definitions(self, converter) -> None:
        result = converter.validate_markdown("# T\n\nSee [docs][d].\n\n[d]: http.example.com\n")
        assert [(w.code, w.line) for w in result.warnings] == [('MALFORMED_LINK', None)]
        assert 'http.example.com' in result.warnings[0].message

    def test_validate_suggestions(self, converter) -> None:
        result = converter.validate_markdown(DOC)
        assert result.suggestions == ['Found 1 Mermaid diagram(s) - will be converted to images']

    def test_stats(self, converter, tmp_path) -> None:
        path = tmp_path / 'doc.md'
        path.write_text(DOC, encoding='utf-8')
        stats = converter.get_conversion_stats(str(path))
        assert stats['heading_count'] == 2
        assert stats['link_count'] == 2
        assert stats['links'] == {'total': 2, 'by_kind': {'anchor': 1, 'external': 1}, 'valid': 2, 'invalid': 0}
        assert stats['diagram_count'] == 1
        assert stats['image_count'] == 0
        assert stats['estimated_pages'] == 1
        assert stats['reading_time'] == 1
        assert stats['file_size'].endswith(' B')

    def test_available_lists(self) -> None:
        assert 'simple' in MarkdownDocxConverter.get_available_templates()
        assert 'dark' in MarkdownDocxConverter.get_available_themes()
