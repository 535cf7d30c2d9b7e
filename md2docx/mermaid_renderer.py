"""
Mermaid diagram rendering.

Fenced ```` ```mermaid ```` blocks are rendered to PNG through a
:class:`RenderBackend` and replaced by image references of the form
``![Mermaid Diagram <id>](mermaid-<id>.png)``. A block that fails to render
is left exactly as written and reported as a warning.

The backend is started on the first diagram, reused for the rest of the
call and closed when the call ends, on every exit path. The scratch
directory is emptied at the same point.
"""

from __future__ import annotations

import enum
import io
import logging
import os
import re
import shutil
import subprocess
import tempfile
import uuid
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

import httpx
from PIL import Image, ImageChops

from .config import DEFAULT_CONFIG
from .context import ConversionContext
from .exceptions import DiagramRenderError
from .models import ProcessedDiagram
from .options import OutputOptions
from .retry import RetryPolicy

logger = logging.getLogger('md2docx')

MERMAID_FENCE_RE = re.compile(r'^```mermaid\n(?P<code>.*?)^```$', re.MULTILINE | re.DOTALL)

_SVG_TAG_RE = re.compile(r'<svg\b[^>]*>', re.IGNORECASE | re.DOTALL)
_SVG_ATTR_RE = r'\b{}\s*=\s*["\']\s*([0-9.]+)\s*(?:px)?\s*["\']'
_SVG_VIEWBOX_RE = re.compile(r'\bviewBox\s*=\s*["\']\s*([-0-9.eE]+)[\s,]+([-0-9.eE]+)[\s,]+([0-9.eE]+)[\s,]+([0-9.eE]+)', re.IGNORECASE)
_SVG_MAX_WIDTH_RE = re.compile(r'max-width:\s*([0-9.]+)px', re.IGNORECASE)


@dataclass
class RasterImage:
    """Rendered diagram before resizing.

    ``bbox`` is the width/height of the vector graphic, when known.
    """
    data: bytes
    format: str = 'png'
    bbox: Optional[Tuple[float, float]] = None


def svg_dimensions(svg: str) -> Optional[Tuple[float, float]]:
    """Measure the bounding box of an SVG document from its root element.

    Explicit ``width``/``height`` attributes win; otherwise the ``viewBox``
    size is used, capped by an inline ``max-width`` style (Mermaid emits
    ``width="100%"`` with a max-width).
    """
    match = _SVG_TAG_RE.search(svg or '')
    if not match:
        return None
    tag = match.group(0)

    width = re.search(_SVG_ATTR_RE.format('width'), tag)
    height = re.search(_SVG_ATTR_RE.format('height'), tag)
    if width and height:
        return float(width.group(1)), float(height.group(1))

    view_box = _SVG_VIEWBOX_RE.search(tag)
    if not view_box:
        return None
    vb_width, vb_height = float(view_box.group(3)), float(view_box.group(4))
    if vb_width <= 0 or vb_height <= 0:
        return None

    max_width = _SVG_MAX_WIDTH_RE.search(tag)
    if max_width and float(max_width.group(1)) < vb_width:
        scale = float(max_width.group(1)) / vb_width
        return vb_width * scale, vb_height * scale
    return vb_width, vb_height


def apply_theme(source: str, theme: str) -> str:
    """Prefix a Mermaid init directive selecting ``theme``.

    Sources that already carry an init directive are left alone.
    """
    if source.lstrip().startswith('%%{init'):
        return source
    return f'%%{{init: {{"theme": "{theme}"}}}}%%\n{source}'


def fit_raster(data, bbox=None, max_width=None, max_height=None, optimize=False):
    """Clip blank margins and shrink a raster to fit the diagram bounds.

    The target box is ``min(max, bbox)`` per axis. Aspect ratio is kept and
    images are never enlarged.

    Returns:
        (png_bytes, width, height)
    """
    max_width = max_width or DEFAULT_CONFIG.DIAGRAM_MAX_WIDTH
    max_height = max_height or DEFAULT_CONFIG.DIAGRAM_MAX_HEIGHT

    with Image.open(io.BytesIO(data)) as src:
        src.load()
        im = src.convert('RGBA') if src.mode not in ('RGB', 'RGBA', 'L') else src.copy()

    background = Image.new(im.mode, im.size, im.getpixel((0, 0)))
    content_box = ImageChops.difference(im, background).getbbox()
    if content_box and content_box != (0, 0) + im.size:
        im = im.crop(content_box)

    target_w, target_h = max_width, max_height
    if bbox:
        target_w = min(max_width, max(1, round(bbox[0])))
        target_h = min(max_height, max(1, round(bbox[1])))
    im.thumbnail((target_w, target_h), Image.Resampling.LANCZOS)

    out = io.BytesIO()
    im.save(out, format='PNG', optimize=optimize)
    return out.getvalue(), im.width, im.height


class RenderBackend(ABC):
    """A disposable diagram rendering resource.

    Subclasses implement :meth:`_open`, :meth:`_release` and :meth:`render`.
    :meth:`close` is idempotent and releases every handle the backend owns;
    it is safe to call on a backend that never started.
    """

    name = 'backend'

    def __init__(self):
        self._running = False

    @property
    def is_running(self):
        return self._running

    def start(self):
        if not self._running:
            self._open()
            self._running = True
            logger.debug("Started %s rendering backend", self.name)

    def close(self):
        if not self._running:
            return
        try:
            self._release()
        finally:
            self._running = False
            logger.debug("Closed %s rendering backend", self.name)

    def _open(self):
        pass

    def _release(self):
        pass

    @abstractmethod
    def render(self, source: str, theme: str, timeout: float) -> RasterImage:
        """Render Mermaid source to a raster.

        Raises:
            DiagramRenderError: On timeout or any rendering failure
        """

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class KrokiBackend(RenderBackend):
    """Render through a Kroki server over HTTP.

    One ``httpx.Client`` is opened on :meth:`start` and shared by every
    diagram. The SVG is fetched to measure the diagram, then the PNG.
    """

    name = 'kroki'
    USER_AGENT = 'md2docx/1.0'

    def __init__(self, server_url=None, retry_policy=None, transport=None):
        super().__init__()
        self.server_url = (server_url or DEFAULT_CONFIG.KROKI_URL).rstrip('/')
        self.retry_policy = retry_policy or RetryPolicy(
            retry_on=(httpx.NetworkError, httpx.RemoteProtocolError, httpx.HTTPStatusError)
        )
        self._transport = transport
        self._client = None

    def _open(self):
        self._client = httpx.Client(
            base_url=self.server_url,
            headers={'Content-Type': 'text/plain', 'User-Agent': self.USER_AGENT},
            transport=self._transport,
        )

    def _release(self):
        if self._client is not None:
            self._client.close()
            self._client = None

    def _post(self, output_format, data, timeout):
        response = self._client.post(f'/mermaid/{output_format}', content=data, timeout=timeout)
        if 400 <= response.status_code < 500:
            raise DiagramRenderError(
                f"Kroki rejected diagram ({response.status_code}): {response.text[:200]}",
                details={'status': response.status_code},
            )
        response.raise_for_status()
        return response

    def render(self, source, theme, timeout):
        if self._client is None:
            raise DiagramRenderError("Kroki backend is not started")
        data = apply_theme(source.strip(), theme).encode('utf-8')
        try:
            svg = self.retry_policy.call(self._post, 'svg', data, timeout).text
            png = self.retry_policy.call(self._post, 'png', data, timeout).content
        except httpx.TimeoutException as e:
            raise DiagramRenderError(f"Timed out after {timeout}s waiting for Kroki") from e
        except httpx.HTTPError as e:
            raise DiagramRenderError(f"Kroki request failed: {e}") from e
        return RasterImage(data=png, format='png', bbox=svg_dimensions(svg))


class MermaidCliBackend(RenderBackend):
    """Render with the ``mmdc`` executable from @mermaid-js/mermaid-cli."""

    name = 'mmdc'

    def __init__(self, work_dir, executable=None, background='white', scale=2):
        super().__init__()
        self.work_dir = work_dir
        self.executable = executable or DEFAULT_CONFIG.MERMAID_CLI
        self.background = background
        self.scale = scale
        self._command = None

    def _open(self):
        command = shutil.which(self.executable)
        if command is None:
            raise DiagramRenderError(f"Mermaid CLI not found: {self.executable}")
        os.makedirs(self.work_dir, exist_ok=True)
        self._command = command

    def _release(self):
        self._command = None

    def _run(self, input_path, output_path, theme, timeout, extra=()):
        cmd = [
            self._command, '-i', input_path, '-o', output_path,
            '-t', theme, '-b', self.background, *extra,
        ]
        try:
            subprocess.run(cmd, check=True, capture_output=True, timeout=timeout)
        except subprocess.TimeoutExpired as e:
            raise DiagramRenderError(f"Timed out after {timeout}s waiting for mmdc") from e
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or b'').decode('utf-8', errors='replace').strip()
            raise DiagramRenderError(f"mmdc failed: {stderr or e}") from e

    def render(self, source, theme, timeout):
        if self._command is None:
            raise DiagramRenderError("mmdc backend is not started")
        stem = os.path.join(self.work_dir, f'src-{uuid.uuid4().hex}')
        input_path = stem + '.mmd'
        with open(input_path, 'w', encoding='utf-8') as f:
            f.write(source)

        self._run(input_path, stem + '.svg', theme, timeout)
        self._run(input_path, stem + '.png', theme, timeout, extra=('-s', str(self.scale)))

        with open(stem + '.svg', 'r', encoding='utf-8') as f:
            svg = f.read()
        with open(stem + '.png', 'rb') as f:
            png = f.read()
        return RasterImage(data=png, format='png', bbox=svg_dimensions(svg))


class RendererState(enum.Enum):
    IDLE = 'idle'
    BACKEND_READY = 'backend_ready'
    TORN_DOWN = 'torn_down'


@dataclass
class DiagramProcessingResult:
    content: str
    diagrams: List[ProcessedDiagram] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    block_count: int = 0

    @property
    def diagram_count(self):
        return len(self.diagrams)

    @property
    def failed_count(self):
        return self.block_count - len(self.diagrams)


def create_backend(name, scratch_dir, kroki_url=None, retry_policy=None):
    """Instantiate a backend by name (``kroki`` or ``mmdc``)."""
    if name == 'kroki':
        return KrokiBackend(server_url=kroki_url, retry_policy=retry_policy)
    if name == 'mmdc':
        return MermaidCliBackend(work_dir=scratch_dir)
    raise ValueError(f"Unknown renderer backend: {name}")


class DiagramRenderer:
    """Replace Mermaid fences in Markdown with rendered PNG references.

    Args:
        backend_factory: Zero-argument callable returning a RenderBackend.
            Defaults to a :class:`KrokiBackend`.
        theme: Mermaid theme name
        timeout: Seconds allowed per diagram
        max_workers: Render diagrams concurrently when greater than 1
        scratch_dir: Directory for intermediate images; a private temp
            directory is used when omitted
        output_options: Image encoding options
        context: ConversionContext for logging and cancellation
    """

    def __init__(self, backend_factory: Optional[Callable[[], RenderBackend]] = None, theme='default',
                 timeout=None, max_workers=None, scratch_dir=None, output_options=None,
                 context=None, config=None):
        self.config = config if config is not None else DEFAULT_CONFIG
        self.context = context or ConversionContext(config=self.config)
        self.theme = theme
        self.timeout = timeout if timeout is not None else self.config.DIAGRAM_TIMEOUT
        self.max_workers = max(1, max_workers or self.config.DIAGRAM_MAX_WORKERS)
        self.output_options = output_options or OutputOptions()
        self.scratch_dir = scratch_dir or os.path.join(
            tempfile.gettempdir(), f'{self.config.SCRATCH_DIR_NAME}-{uuid.uuid4().hex[:8]}'
        )
        self.backend_factory = backend_factory or (lambda: KrokiBackend())
        self.state = RendererState.IDLE
        self._backend = None

    @staticmethod
    def find_blocks(text):
        """Return the match objects of every Mermaid fence in ``text``."""
        return list(MERMAID_FENCE_RE.finditer(text))

    def process_content(self, text: str) -> DiagramProcessingResult:
        """Render every Mermaid block in ``text``.

        Returns:
            DiagramProcessingResult with the rewritten text, the rendered
            diagrams in document order and one warning per failed block.
        """
        matches = self.find_blocks(text)
        if not matches:
            return DiagramProcessingResult(content=text)

        logger.debug("Found %d Mermaid blocks", len(matches))
        warnings: List[str] = []
        rendered: List[Optional[ProcessedDiagram]] = [None] * len(matches)

        try:
            os.makedirs(self.scratch_dir, exist_ok=True)
            if self.max_workers > 1:
                self._render_concurrently(matches, rendered, warnings)
            else:
                self._render_sequentially(matches, rendered, warnings)
        finally:
            self._teardown()

        pieces = []
        cursor = 0
        for match, diagram in zip(matches, rendered):
            pieces.append(text[cursor:match.start()])
            pieces.append(diagram.markdown_reference if diagram else match.group(0))
            cursor = match.end()
        pieces.append(text[cursor:])

        diagrams = [d for d in rendered if d is not None]
        logger.info("Rendered %d of %d Mermaid diagrams", len(diagrams), len(matches))
        return DiagramProcessingResult(
            content=''.join(pieces),
            diagrams=diagrams,
            warnings=warnings,
            block_count=len(matches),
        )

    def _render_sequentially(self, matches, rendered, warnings):
        for index, match in enumerate(matches):
            if index:
                self.context.check_cancelled('between diagrams')
            diagram, warning = self._render_block(index, match.group('code'))
            rendered[index] = diagram
            if warning:
                warnings.append(warning)

    def _render_concurrently(self, matches, rendered, warnings):
        codes = [m.group('code') for m in matches]
        if any(code.strip() for code in codes):
            # Workers share one backend, so it must be running before they start
            try:
                self._ensure_backend()
            except Exception as e:
                logger.warning("Diagram backend failed to start: %s", e)
                warnings.extend(
                    f"Mermaid diagram {index + 1} could not be rendered (DIAGRAM_RENDER_FAILED): {e}"
                    for index in range(len(codes))
                )
                return
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            outcomes = list(pool.map(self._render_block, range(len(codes)), codes))
        for index, (diagram, warning) in enumerate(outcomes):
            rendered[index] = diagram
            if warning:
                warnings.append(warning)

    def _ensure_backend(self):
        if self._backend is None:
            self._backend = self.backend_factory()
        if not self._backend.is_running:
            self._backend.start()
            self.state = RendererState.BACKEND_READY
        return self._backend

    def _render_block(self, index, code):
        """Render one block; failures become ``(None, warning)``."""
        if not code.strip():
            return None, f"Mermaid diagram {index + 1} is empty and was left unchanged"
        try:
            backend = self._ensure_backend()
            raster = backend.render(code, self.theme, self.timeout)
            data, width, height = fit_raster(
                raster.data,
                bbox=raster.bbox,
                max_width=self.config.DIAGRAM_MAX_WIDTH,
                max_height=self.config.DIAGRAM_MAX_HEIGHT,
                optimize=self.output_options.optimize_size,
            )
            diagram_id = str(uuid.uuid4())
            with open(os.path.join(self.scratch_dir, f'{diagram_id}.png'), 'wb') as f:
                f.write(data)
        except Exception as e:
            logger.warning("Failed to render Mermaid diagram %d: %s", index + 1, e)
            error = e if isinstance(e, DiagramRenderError) else DiagramRenderError(str(e))
            return None, f"Mermaid diagram {index + 1} could not be rendered ({error.code}): {error.message}"

        logger.debug("Rendered Mermaid diagram %s (%dx%d)", diagram_id, width, height)
        return ProcessedDiagram(
            source_code=code,
            image_bytes=data,
            format='png',
            width=width,
            height=height,
            id=diagram_id,
        ), None

    def _teardown(self):
        backend, self._backend = self._backend, None
        try:
            if backend is not None:
                backend.close()
        finally:
            self._empty_scratch_dir()
            self.state = RendererState.TORN_DOWN

    def _empty_scratch_dir(self):
        if not os.path.isdir(self.scratch_dir):
            return
        for entry in os.scandir(self.scratch_dir):
            if entry.is_dir(follow_symlinks=False):
                shutil.rmtree(entry.path)
            else:
                os.remove(entry.path)
