"""
Configuration constants for md2docx converter.

This module centralizes all magic numbers and default values used throughout
the conversion process. Values can be overridden by:
1. Style templates from the style registry
2. Conversion options passed by the caller
"""


class ConversionConfig:
    """Default configuration values for DOCX conversion."""

    # === Unit Conversion ===
    EMU_PER_PX = 9525  # English Metric Units per pixel (96 DPI)
    EMU_PER_INCH = 914400
    TWIPS_PER_INCH = 1440

    # === Page Layout (A4 in twips) ===
    PAGE_WIDTH = 11906
    PAGE_HEIGHT = 16838
    PAGE_MARGIN_DEFAULT = {
        'top': 1440,
        'right': 1440,
        'bottom': 1440,
        'left': 1440,
    }
    HEADER_FOOTER_DISTANCE = 708

    # === Diagram Rendering ===
    DIAGRAM_MAX_WIDTH = 800  # Raster bound in pixels
    DIAGRAM_MAX_HEIGHT = 600
    DIAGRAM_TIMEOUT = 10.0  # Seconds to wait for a rendered graphic
    DIAGRAM_MAX_WORKERS = 1  # Sequential unless explicitly raised
    DIAGRAM_BACKGROUND = '#FFFFFF'
    KROKI_URL = 'https://kroki.io'
    MERMAID_CLI = 'mmdc'
    SCRATCH_DIR_NAME = 'md2docx-mermaid'

    # === Retry Policy ===
    RETRY_MAX_ATTEMPTS = 3
    RETRY_BASE_DELAY = 1.0
    RETRY_MAX_DELAY = 10.0

    # === Image Settings ===
    IMAGE_MAX_WIDTH_PX = 576  # 6 inches at 96 DPI, fits portrait body width
    IMAGE_DEFAULT_WIDTH_PX = 288
    IMAGE_DEFAULT_HEIGHT_PX = 216

    # === List Indentation ===
    LIST_INDENT_PER_LEVEL = 720  # Twips per nesting level
    LIST_HANGING_INDENT = 360
    LIST_BULLET_CHARS = ['•', '◦', '▪']

    # === Block Quote ===
    BLOCKQUOTE_LEFT_INDENT = 720

    # === Metadata Estimation ===
    WORDS_PER_PAGE = 500

    # === Security Limits ===
    MAX_INPUT_FILE_SIZE = 50 * 1024 * 1024  # Files above this only warn
    MAX_NESTING_DEPTH = 20  # Max recursion for nested lists/quotes
    MAX_IMAGE_COUNT = 500  # Max number of images in a single document

    # === Word limits ===
    BOOKMARK_NAME_MAX = 40


# Global default config instance
DEFAULT_CONFIG = ConversionConfig()
