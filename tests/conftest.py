"""Test setup for md2docx."""

from __future__ import annotations

import io
import zipfile
import xml.etree.ElementTree as ET

import pytest
from PIL import Image

from md2docx.exceptions import DiagramRenderError
from md2docx.mermaid_renderer import RasterImage, RenderBackend

W_NS = 'http://schemas.openxmlformats.org/wordprocessingml/2006/main'
NS = {
    'w': W_NS,
    'r': 'http://schemas.openxmlformats.org/officeDocument/2006/relationships',
    'rel': 'http://schemas.openxmlformats.org/package/2006/relationships',
}


def make_png(width=120, height=80, color=(40, 90, 200)) -> bytes:
    """A PNG with a coloured box on a white margin."""
    im = Image.new('RGB', (width, height), (255, 255, 255))
    im.paste(color, (10, 10, width - 10, height - 10))
    buf = io.BytesIO()
    im.save(buf, format='PNG')
    return buf.getvalue()


class FakeBackend(RenderBackend):
    """In-process backend that records its lifecycle.

    ``fail_on`` is a substring; sources containing it raise a render error.
    ``crash_on`` raises an unexpected RuntimeError instead.
    """

    name = 'fake'

    def __init__(self, fail_on=None, crash_on=None, bbox=(100.0, 60.0)):
        super().__init__()
        self.fail_on = fail_on
        self.crash_on = crash_on
        self.bbox = bbox
        self.starts = 0
        self.closes = 0
        self.rendered = []

    def _open(self):
        self.starts += 1

    def _release(self):
        self.closes += 1

    def render(self, source, theme, timeout):
        if self.crash_on and self.crash_on in source:
            raise RuntimeError("renderer crashed")
        if self.fail_on and self.fail_on in source:
            raise DiagramRenderError("syntax error in diagram")
        self.rendered.append((source, theme))
        return RasterImage(data=make_png(), bbox=self.bbox)


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


def read_part(package: bytes, name: str) -> bytes:
    with zipfile.ZipFile(io.BytesIO(package)) as zf:
        return zf.read(name)


def part_xml(package: bytes, name: str) -> ET.Element:
    return ET.fromstring(read_part(package, name))


def part_names(package: bytes) -> list:
    with zipfile.ZipFile(io.BytesIO(package)) as zf:
        return zf.namelist()


def w(tag: str) -> str:
    return f'{{{W_NS}}}{tag}'


def rewrite_parts(package: bytes, transform) -> bytes:
    """Copy a package, passing each part through ``transform(name, data)``."""
    buf = io.BytesIO()
    with zipfile.ZipFile(io.BytesIO(package)) as src, zipfile.ZipFile(buf, 'w') as dst:
        for name in src.namelist():
            dst.writestr(name, transform(name, src.read(name)))
    return buf.getvalue()
