"""Tests for MarkdownToDocx package serialization."""

from __future__ import annotations

from dataclasses import replace

import pytest

from conftest import NS, FakeBackend, part_names, part_xml, read_part, w
from md2docx.MarkdownToDocx import MarkdownToDocx
from md2docx.document_builder import DocumentModelBuilder
from md2docx.exceptions import PackageStructureError
from md2docx.mermaid_renderer import DiagramRenderer
from md2docx.models import DocumentModel
from md2docx.options import MarkdownToDocxOptions

REL_BASE = 'http://schemas.openxmlformats.org/officeDocument/2006/relationships'


def build(text, **options):
    result = DocumentModelBuilder().build(text)
    serializer = MarkdownToDocx(result.model, result.diagrams, result.links,
                                options=MarkdownToDocxOptions(**options))
    return serializer.to_bytes(), serializer


def paragraphs(package):
    body = part_xml(package, 'word/document.xml').find('w:body', NS)
    return body.findall('w:p', NS)


def para_style(para):
    style = para.find('w:pPr/w:pStyle', NS)
    return style.get(w('val')) if style is not None else None


def para_text(para):
    return ''.join(t.text or '' for t in para.iter(w('t')))


def bookmark_names(package):
    doc = part_xml(package, 'word/document.xml')
    return [b.get(w('name')) for b in doc.findall('.//w:bookmarkStart', NS)]


def toc_anchors(package):
    levels = {f'TOC{n}' for n in range(1, 7)}
    return [p.find('w:hyperlink', NS).get(w('anchor'))
            for p in paragraphs(package) if para_style(p) in levels]


class TestPackageParts:
    """Tests for the parts and relationships of the package."""

    def test_required_parts(self) -> None:
        package, _ = build("# Title\n\nBody\n")
        names = part_names(package)
        for name in ('[Content_Types].xml', '_rels/.rels', 'word/document.xml', 'word/styles.xml',
                     'word/numbering.xml', 'word/settings.xml', 'word/_rels/document.xml.rels',
                     'docProps/core.xml', 'docProps/app.xml'):
            assert name in names
        assert names[0] == '[Content_Types].xml'

    def test_document_relationships(self) -> None:
        package, _ = build("Body\n")
        rels = part_xml(package, 'word/_rels/document.xml.rels')
        by_id = {r.get('Id'): r.get('Target') for r in rels.findall('rel:Relationship', NS)}
        assert by_id['rId1'] == 'styles.xml'
        assert by_id['rId2'] == 'numbering.xml'
        assert by_id['rId3'] == 'settings.xml'

    def test_metadata_can_be_omitted(self) -> None:
        package, _ = build("Body\n", include_metadata=False)
        assert 'docProps/core.xml' not in part_names(package)

    def test_core_properties(self) -> None:
        package, _ = build("Body\n", title="Report", author="Dana")
        core = read_part(package, 'docProps/core.xml').decode('utf-8')
        assert '<dc:title>Report</dc:title>' in core
        assert '<dc:creator>Dana</dc:creator>' in core

    def test_header_and_footer_from_template(self) -> None:
        package, _ = build("Body\n", template='professional-report')
        names = part_names(package)
        assert 'word/header1.xml' in names
        assert 'word/footer1.xml' in names
        footer = read_part(package, 'word/footer1.xml').decode('utf-8')
        assert 'PAGE' in footer
        assert 'NUMPAGES' in footer

    def test_simple_template_has_no_footer(self) -> None:
        package, _ = build("Body\n", template='simple')
        assert 'word/footer1.xml' not in part_names(package)

    def test_landscape(self) -> None:
        package, _ = build("Body\n", orientation='landscape')
        pg_sz = part_xml(package, 'word/document.xml').find('.//w:sectPr/w:pgSz', NS)
        assert pg_sz.get(w('orient')) == 'landscape'
        assert int(pg_sz.get(w('w'))) > int(pg_sz.get(w('h')))


class TestBlocks:
    """Tests for block serialization."""

    def test_heading_styles_and_bookmarks(self) -> None:
        package, _ = build("# Getting Started\n\n## Next Step\n")
        paras = paragraphs(package)
        assert [para_style(p) for p in paras] == ['Heading1', 'Heading2']
        bookmark = paras[0].find('w:bookmarkStart', NS)
        assert bookmark.get(w('name')) == 'getting_started'

    def test_duplicate_heading_gets_one_bookmark(self) -> None:
        package, _ = build("# Same\n\n# Same\n")
        doc = part_xml(package, 'word/document.xml')
        assert len(doc.findall('.//w:bookmarkStart', NS)) == 1

    def test_code_block_is_one_paragraph(self) -> None:
        package, _ = build("```\nline one\nline two\n```\n")
        paras = paragraphs(package)
        assert [para_style(p) for p in paras] == ['Code']
        assert len(paras[0].findall('.//w:br', NS)) == 1
        assert para_text(paras[0]) == 'line oneline two'

    def test_lists_use_numbering(self) -> None:
        package, _ = build("- a\n- b\n\n3. c\n4. d\n")
        paras = paragraphs(package)
        num_ids = [p.find('w:pPr/w:numPr/w:numId', NS).get(w('val')) for p in paras]
        assert num_ids[:2] == ['1', '1']
        assert num_ids[2] == num_ids[3] != '1'

        numbering = part_xml(package, 'word/numbering.xml')
        nums = {n.get(w('numId')): n for n in numbering.findall('w:num', NS)}
        override = nums[num_ids[2]].find('w:lvlOverride/w:startOverride', NS)
        assert override.get(w('val')) == '3'

    def test_table(self) -> None:
        package, _ = build("| A | B |\n|---|:-:|\n| 1 | 2 |\n")
        tables = part_xml(package, 'word/document.xml').findall('.//w:tbl', NS)
        assert len(tables) == 1
        rows = tables[0].findall('w:tr', NS)
        assert len(rows) == 2
        assert [para_text(c) for c in rows[1].findall('w:tc', NS)] == ['1', '2']

    def test_quote_and_rule(self) -> None:
        package, _ = build("> quoted\n\n---\n")
        assert [para_style(p) for p in paragraphs(package)] == ['Quote', 'HorizontalRule']

    def test_inline_formatting(self) -> None:
        package, _ = build("**b** *i* ~~s~~ `c`\n")
        runs = paragraphs(package)[0].findall('w:r', NS)
        props = {para_text(r): r.find('w:rPr', NS) for r in runs if para_text(r).strip()}
        assert props['b'].find('w:b', NS) is not None
        assert props['i'].find('w:i', NS) is not None
        assert props['s'].find('w:strike', NS) is not None
        assert props['c'].find('w:rStyle', NS).get(w('val')) == 'VerbatimChar'

    def test_invalid_block_raises(self) -> None:
        model = DocumentModel(blocks=[{"t": "Mystery", "c": []}])
        with pytest.raises(PackageStructureError):
            MarkdownToDocx(model).to_bytes()

    def test_heading_level_out_of_range_raises(self) -> None:
        model = DocumentModel(blocks=[{"t": "Header", "c": [7, ["x", [], []], []]}])
        with pytest.raises(PackageStructureError):
            MarkdownToDocx.serialize(model)


class TestLinks:
    """Tests for hyperlink serialization."""

    def test_anchor_link_targets_bookmark(self) -> None:
        package, serializer = build("# Intro\n\n[back](#intro)\n")
        link = part_xml(package, 'word/document.xml').find('.//w:hyperlink', NS)
        assert link.get(w('anchor')) == 'intro'
        assert serializer.counters['internal_link_count'] == 1

    def test_resolved_links_decide_validity(self) -> None:
        result = DocumentModelBuilder().build("[site](https://example.com)\n")
        links = [replace(link, is_valid=False) for link in result.links]
        package = MarkdownToDocx.serialize(result.model, result.diagrams, links)
        assert part_xml(package, 'word/document.xml').find('.//w:hyperlink', NS) is None

    def test_anchor_link_follows_unique_bookmark(self) -> None:
        package, _ = build("# 概要\n\n# 結論\n\n[see](#結論)\n")
        link = part_xml(package, 'word/document.xml').find('.//w:hyperlink', NS)
        assert bookmark_names(package) == ['h_', 'h_1']
        assert link.get(w('anchor')) == 'h_1'

    def test_external_link_relationship(self) -> None:
        package, serializer = build("[site](https://example.com/a)\n")
        link = part_xml(package, 'word/document.xml').find('.//w:hyperlink', NS)
        rid = link.get(f'{{{REL_BASE}}}id')
        rels = part_xml(package, 'word/_rels/document.xml.rels')
        rel = [r for r in rels.findall('rel:Relationship', NS) if r.get('Id') == rid][0]
        assert rel.get('Target') == 'https://example.com/a'
        assert rel.get('TargetMode') == 'External'
        assert serializer.counters['external_link_count'] == 1

    def test_markdown_link_rewritten_to_docx(self) -> None:
        package, serializer = build("[other](guide.md#Setup)\n")
        rels = read_part(package, 'word/_rels/document.xml.rels').decode('utf-8')
        assert 'guide.docx#setup' in rels
        assert serializer.counters['internal_link_count'] == 1

    def test_links_disabled_keep_text(self) -> None:
        package, _ = build("[site](https://example.com)\n", preserve_links=False)
        doc = part_xml(package, 'word/document.xml')
        assert doc.find('.//w:hyperlink', NS) is None
        assert para_text(paragraphs(package)[0]) == 'site'

    def test_malformed_link_written_as_text(self) -> None:
        package, _ = build("[bad](http.example.com)\n")
        doc = part_xml(package, 'word/document.xml')
        assert doc.find('.//w:hyperlink', NS) is None
        assert para_text(paragraphs(package)[0]) == 'bad'


class TestTableOfContents:
    """Tests for the generated table of contents."""

    def test_toc_entries_link_to_heading_bookmarks(self) -> None:
        package, _ = build("# One\n\n## Two\n", toc_generation=True)
        paras = paragraphs(package)
        assert para_style(paras[0]) == 'TOCHeading'
        assert [para_style(p) for p in paras[1:3]] == ['TOC1', 'TOC2']
        anchors = [p.find('w:hyperlink', NS).get(w('anchor')) for p in paras[1:3]]
        bookmarks = [b.get(w('name')) for b in
                     part_xml(package, 'word/document.xml').findall('.//w:bookmarkStart', NS)]
        assert anchors == bookmarks == ['one', 'two']
        assert paras[3].find('w:r/w:br', NS).get(w('type')) == 'page'

    @pytest.mark.parametrize("text, expected", [
        ("# 概要\n\n# 結論\n", ['h_', 'h_1']),
        ("# Über\n\n# ber\n", ['ber', 'ber_1']),
    ])
    def test_colliding_bookmark_names_made_unique(self, text, expected) -> None:
        package, _ = build(text, toc_generation=True)
        assert toc_anchors(package) == bookmark_names(package) == expected

    def test_long_headings_get_distinct_bookmarks(self) -> None:
        text = ("# A very long heading about configuration options\n\n"
                "# A very long heading about configuration defaults\n")
        package, _ = build(text, toc_generation=True)
        names = bookmark_names(package)
        assert toc_anchors(package) == names
        assert len(set(names)) == 2
        assert all(len(name) <= 40 for name in names)

    def test_no_toc_without_headings(self) -> None:
        package, _ = build("Just text\n", toc_generation=True)
        assert [para_style(p) for p in paragraphs(package)] == [None]


class TestMedia:
    """Tests for embedded diagrams and images."""

    def test_diagram_embedded(self, tmp_path) -> None:
        renderer = DiagramRenderer(backend_factory=FakeBackend, scratch_dir=str(tmp_path))
        result = DocumentModelBuilder(renderer=renderer).build("```mermaid\ngraph TD\n  A-->B\n```\n")
        serializer = MarkdownToDocx(result.model, result.diagrams, result.links)
        package = serializer.to_bytes()

        diagram = result.diagrams[0]
        assert f'word/media/mermaid-{diagram.id}.png' in part_names(package)
        assert read_part(package, f'word/media/mermaid-{diagram.id}.png') == diagram.image_bytes
        assert serializer.counters['diagram_count'] == 1
        content_types = read_part(package, '[Content_Types].xml').decode('utf-8')
        assert 'image/png' in content_types

    def test_local_image_embedded_once(self, tmp_path, png_bytes) -> None:
        (tmp_path / 'pic.png').write_bytes(png_bytes)
        package, serializer = build("![a](pic.png)\n\n![b](pic.png)\n", base_dir=str(tmp_path))
        media = [n for n in part_names(package) if n.startswith('word/media/')]
        assert media == ['word/media/image1.png']
        assert serializer.counters['image_count'] == 1
        assert len(part_xml(package, 'word/document.xml').findall('.//w:drawing', NS)) == 2

    def test_missing_image_becomes_placeholder(self, tmp_path) -> None:
        package, serializer = build("![gone](missing.png)\n", base_dir=str(tmp_path))
        assert para_text(paragraphs(package)[0]) == '[Image: gone]'
        assert serializer.warnings == ['Image not found: missing.png']

    def test_traversal_path_rejected(self, tmp_path) -> None:
        _package, serializer = build("![x](../secret.png)\n", base_dir=str(tmp_path))
        assert len(serializer.warnings) == 1
        assert 'traversal' in serializer.warnings[0]

    def test_remote_image_not_fetched(self) -> None:
        _package, serializer = build("![r](https://example.com/x.png)\n")
        assert serializer.warnings == ['Remote image not embedded: https://example.com/x.png']
