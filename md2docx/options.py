"""
Conversion options for both directions.

Options can be built directly or from a plain dict (CLI, HTTP form, YAML
front matter) with :meth:`from_dict`, which accepts both ``snake_case`` and
the ``camelCase`` keys used by the JSON API.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, Dict, List, Optional

from .config import DEFAULT_CONFIG
from .exceptions import InvalidOptionsError

_CAMEL_RE = re.compile(r'(?<!^)(?=[A-Z])')

ORIENTATIONS = ('portrait', 'landscape')
IMAGE_FORMATS = ('png', 'jpg', 'svg')
RENDERER_BACKENDS = ('kroki', 'mmdc')


def _to_snake(key: str) -> str:
    return _CAMEL_RE.sub('_', key).lower()


def _check_choice(name: str, value: Any, allowed) -> None:
    if value not in allowed:
        raise InvalidOptionsError(
            f"Invalid {name}: {value!r}",
            details={'option': name, 'allowed': list(allowed)},
        )


@dataclass
class PageMargins:
    top: int = 1440
    right: int = 1440
    bottom: int = 1440
    left: int = 1440

    def as_dict(self) -> Dict[str, int]:
        return {'top': self.top, 'right': self.right, 'bottom': self.bottom, 'left': self.left}


@dataclass
class OutputOptions:
    compress: bool = True
    image_quality: int = 90
    optimize_size: bool = False


@dataclass
class ConversionOptions:
    template: str = 'simple'
    mermaid_theme: str = 'default'
    preserve_links: bool = True
    toc_generation: bool = False
    include_metadata: bool = True
    custom_styles: Optional[Dict[str, Any]] = None
    output_options: OutputOptions = field(default_factory=OutputOptions)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]] = None):
        """Build options from a dict, ignoring unknown keys.

        Raises:
            InvalidOptionsError: If a value cannot be parsed or is not allowed
        """
        if data is None:
            return cls()
        if isinstance(data, cls):
            return data
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            name = _to_snake(key)
            if name not in known or value is None:
                continue
            try:
                if name == 'output_options' and isinstance(value, dict):
                    value = OutputOptions(**{_to_snake(k): v for k, v in value.items()})
                elif name == 'margins' and isinstance(value, dict):
                    value = PageMargins(**value)
                elif name == 'created_at' and isinstance(value, str):
                    value = datetime.fromisoformat(value)
                elif name == 'keywords' and isinstance(value, str):
                    value = [k.strip() for k in value.split(',') if k.strip()]
            except (TypeError, ValueError) as e:
                raise InvalidOptionsError(f"Invalid {name}: {e}", details={'option': name}) from e
            kwargs[name] = value
        return cls(**kwargs)

    def merged(self, **overrides):
        """Return a copy with non-None overrides applied."""
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        values.update({k: v for k, v in overrides.items() if v is not None})
        return type(self)(**values)


@dataclass
class MarkdownToDocxOptions(ConversionOptions):
    title: Optional[str] = None
    author: Optional[str] = None
    subject: Optional[str] = None
    description: Optional[str] = None
    keywords: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    orientation: str = 'portrait'
    margins: Optional[PageMargins] = None
    renderer_backend: str = 'kroki'
    kroki_url: str = DEFAULT_CONFIG.KROKI_URL
    diagram_timeout: float = DEFAULT_CONFIG.DIAGRAM_TIMEOUT
    diagram_max_workers: int = DEFAULT_CONFIG.DIAGRAM_MAX_WORKERS
    base_dir: Optional[str] = None  # Resolves relative image paths

    def __post_init__(self):
        _check_choice('orientation', self.orientation, ORIENTATIONS)
        _check_choice('renderer_backend', self.renderer_backend, RENDERER_BACKENDS)


@dataclass
class DocxToMarkdownOptions(ConversionOptions):
    preserve_formatting: bool = False
    extract_images: bool = False
    image_output_dir: Optional[str] = None
    image_format: str = 'png'
    inline_images: bool = False

    def __post_init__(self):
        _check_choice('image_format', self.image_format, IMAGE_FORMATS)
