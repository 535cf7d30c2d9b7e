"""Tests for the Mermaid diagram renderer."""

from __future__ import annotations

import io
import os

import httpx
import pytest
from PIL import Image

from conftest import FakeBackend, make_png
from md2docx.context import ConversionContext
from md2docx.exceptions import ConversionCancelledError, DiagramRenderError
from md2docx.mermaid_renderer import (
    DiagramRenderer,
    KrokiBackend,
    RendererState,
    apply_theme,
    create_backend,
    fit_raster,
    MermaidCliBackend,
    svg_dimensions,
)
from md2docx.retry import NO_RETRY

FLOW = "```mermaid\ngraph TD\n  A-->B\n```"
BROKEN = "```mermaid\nBROKEN diagram\n```"


def make_renderer(backend, tmp_path, **kwargs) -> DiagramRenderer:
    return DiagramRenderer(backend_factory=lambda: backend, scratch_dir=str(tmp_path / "scratch"), **kwargs)


class TestSvgDimensions:
    """Tests for svg_dimensions."""

    def test_width_and_height_attributes(self) -> None:
        assert svg_dimensions('<svg width="320" height="200px"></svg>') == (320.0, 200.0)

    def test_viewbox(self) -> None:
        assert svg_dimensions('<svg viewBox="0 0 640 480"></svg>') == (640.0, 480.0)

    def test_viewbox_capped_by_max_width(self) -> None:
        svg = '<svg width="100%" style="max-width: 320px;" viewBox="0 0 640 480"></svg>'
        assert svg_dimensions(svg) == (320.0, 240.0)

    def test_not_svg(self) -> None:
        assert svg_dimensions("<html></html>") is None


class TestApplyTheme:
    """Tests for apply_theme."""

    def test_prefixes_init_directive(self) -> None:
        assert apply_theme("graph TD", "dark").startswith('%%{init: {"theme": "dark"}}%%\n')

    def test_existing_directive_kept(self) -> None:
        source = '%%{init: {"theme": "forest"}}%%\ngraph TD'
        assert apply_theme(source, "dark") == source


class TestFitRaster:
    """Tests for fit_raster."""

    def test_never_exceeds_limits(self) -> None:
        data, width, height = fit_raster(make_png(2000, 1500), max_width=800, max_height=600)
        assert width <= 800 and height <= 600
        with Image.open(io.BytesIO(data)) as im:
            assert im.size == (width, height)

    def test_no_upscaling(self) -> None:
        _data, width, height = fit_raster(make_png(120, 80), max_width=800, max_height=600)
        assert width <= 120 and height <= 80

    def test_crops_blank_margin(self) -> None:
        _data, width, height = fit_raster(make_png(120, 80))
        assert (width, height) == (100, 60)

    def test_respects_bbox(self) -> None:
        _data, width, height = fit_raster(make_png(1000, 1000), bbox=(200, 400))
        assert width <= 200 and height <= 400


class TestDiagramRenderer:
    """Tests for DiagramRenderer.process_content."""

    def test_no_diagrams_leaves_text_and_never_starts_backend(self, tmp_path) -> None:
        backend = FakeBackend()
        result = make_renderer(backend, tmp_path).process_content("# Title\n\nText\n")
        assert result.content == "# Title\n\nText\n"
        assert result.diagrams == []
        assert backend.starts == 0

    def test_replaces_fence_with_reference(self, tmp_path) -> None:
        backend = FakeBackend()
        renderer = make_renderer(backend, tmp_path, theme="forest")
        result = renderer.process_content(f"Before\n\n{FLOW}\n\nAfter\n")

        assert result.diagram_count == 1
        diagram = result.diagrams[0]
        assert f"![Mermaid Diagram {diagram.id}](mermaid-{diagram.id}.png)" in result.content
        assert "```mermaid" not in result.content
        assert diagram.format == "png"
        assert diagram.dimensions == {"width": diagram.width, "height": diagram.height}
        assert diagram.width <= 800 and diagram.height <= 600
        assert backend.rendered[0][1] == "forest"

    def test_backend_reused_and_closed(self, tmp_path) -> None:
        backend = FakeBackend()
        renderer = make_renderer(backend, tmp_path)
        renderer.process_content(f"{FLOW}\n\n{FLOW}\n\n{FLOW}\n")
        assert backend.starts == 1
        assert backend.closes == 1
        assert not backend.is_running
        assert renderer.state is RendererState.TORN_DOWN

    def test_failed_block_stays_byte_identical(self, tmp_path) -> None:
        backend = FakeBackend(fail_on="BROKEN")
        text = f"Intro\n\n{FLOW}\n\n{BROKEN}\n\nOutro\n"
        result = make_renderer(backend, tmp_path).process_content(text)

        assert result.block_count == 2
        assert result.diagram_count == 1
        assert result.failed_count == 1
        assert BROKEN in result.content
        assert len(result.warnings) == 1
        assert "DIAGRAM_RENDER_FAILED" in result.warnings[0]
        assert result.content.count("![Mermaid Diagram") == 1

    def test_unexpected_error_becomes_warning(self, tmp_path) -> None:
        backend = FakeBackend(crash_on="graph")
        result = make_renderer(backend, tmp_path).process_content(FLOW + "\n")
        assert result.diagrams == []
        assert result.content == FLOW + "\n"
        assert "renderer crashed" in result.warnings[0]
        assert backend.closes == 1

    def test_empty_block_warns(self, tmp_path) -> None:
        backend = FakeBackend()
        result = make_renderer(backend, tmp_path).process_content("```mermaid\n\n```\n")
        assert result.diagrams == []
        assert "empty" in result.warnings[0]

    def test_scratch_dir_emptied(self, tmp_path) -> None:
        renderer = make_renderer(FakeBackend(), tmp_path)
        renderer.process_content(f"{FLOW}\n\n{FLOW}\n")
        assert os.listdir(renderer.scratch_dir) == []

    def test_cleanup_when_cancelled(self, tmp_path) -> None:
        backend = FakeBackend()
        calls = []

        def cancel():
            calls.append(1)
            return True

        renderer = make_renderer(backend, tmp_path, context=ConversionContext(cancel_check=cancel))
        with pytest.raises(ConversionCancelledError):
            renderer.process_content(f"{FLOW}\n\n{FLOW}\n")
        assert backend.closes == 1
        assert os.listdir(renderer.scratch_dir) == []
        assert len(backend.rendered) == 1

    def test_backend_start_failure_is_warning(self, tmp_path) -> None:
        class BrokenStart(FakeBackend):
            def _open(self):
                raise DiagramRenderError("cannot launch")

        backend = BrokenStart()
        result = make_renderer(backend, tmp_path).process_content(FLOW + "\n")
        assert result.diagrams == []
        assert "cannot launch" in result.warnings[0]

    def test_concurrent_rendering_keeps_order(self, tmp_path) -> None:
        backend = FakeBackend(fail_on="BROKEN")
        text = f"{FLOW}\n\n{BROKEN}\n\n{FLOW}\n"
        result = make_renderer(backend, tmp_path, max_workers=3).process_content(text)
        assert result.diagram_count == 2
        assert BROKEN in result.content
        assert backend.starts == 1
        assert backend.closes == 1
        assert result.content.index(result.diagrams[0].id) < result.content.index(result.diagrams[1].id)


class TestKrokiBackend:
    """Tests for KrokiBackend with a mocked transport."""

    @staticmethod
    def _transport(svg_status=200, png_status=200, seen=None):
        def handler(request: httpx.Request) -> httpx.Response:
            if seen is not None:
                seen.append((request.url.path, request.content.decode("utf-8")))
            if request.url.path.endswith("/svg"):
                return httpx.Response(svg_status, text='<svg width="100" height="60"></svg>')
            return httpx.Response(png_status, content=make_png())

        return httpx.MockTransport(handler)

    def test_renders_svg_then_png(self) -> None:
        seen = []
        backend = KrokiBackend("https://kroki.example", retry_policy=NO_RETRY, transport=self._transport(seen=seen))
        with backend:
            raster = backend.render("graph TD\n  A-->B", "dark", 5)
        assert [path for path, _ in seen] == ["/mermaid/svg", "/mermaid/png"]
        assert seen[0][1].startswith('%%{init: {"theme": "dark"}}%%')
        assert raster.bbox == (100.0, 60.0)
        assert not backend.is_running

    def test_client_error_is_render_error(self) -> None:
        backend = KrokiBackend("https://kroki.example", retry_policy=NO_RETRY,
                               transport=self._transport(svg_status=400))
        with backend, pytest.raises(DiagramRenderError):
            backend.render("nonsense", "default", 5)

    def test_render_before_start(self) -> None:
        with pytest.raises(DiagramRenderError):
            KrokiBackend().render("graph TD", "default", 5)


class TestCreateBackend:
    """Tests for create_backend."""

    def test_kroki(self, tmp_path) -> None:
        assert isinstance(create_backend("kroki", str(tmp_path)), KrokiBackend)

    def test_mmdc(self, tmp_path) -> None:
        backend = create_backend("mmdc", str(tmp_path))
        assert isinstance(backend, MermaidCliBackend)
        assert backend.work_dir == str(tmp_path)

    def test_unknown(self, tmp_path) -> None:
        with pytest.raises(ValueError):
            create_backend("browser", str(tmp_path))
