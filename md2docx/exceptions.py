"""
Custom exception classes for md2docx converter.

Every exception carries a stable error code so that the conversion
orchestrator can normalize it into a ``{code, message, details}`` record
before it crosses the public API.
"""


class DocxConversionError(Exception):
    """Base exception for all md2docx errors."""

    code = 'CONVERSION_FAILED'

    def __init__(self, message, code=None, details=None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details

    def to_error(self):
        """Return the normalized error record for this exception."""
        # Imported lazily to keep exceptions importable from models
        from .models import ConversionError
        return ConversionError(code=self.code, message=self.message, details=self.details)


class InputFileNotFoundError(DocxConversionError):
    """Input path does not exist."""
    code = 'FILE_NOT_FOUND'


class NotAFileError(DocxConversionError):
    """Input path exists but is a directory or special file."""
    code = 'NOT_A_FILE'


class InvalidFileTypeError(DocxConversionError):
    """Input file has an extension the conversion does not accept."""
    code = 'INVALID_FILE_TYPE'


class FileConversionFailedError(DocxConversionError):
    """A single file conversion failed (I/O, validation, or conversion)."""
    code = 'FILE_CONVERSION_FAILED'


class BatchConversionError(DocxConversionError):
    """Unexpected failure of one item inside a batch."""
    code = 'BATCH_CONVERSION_ERROR'


class DiagramRenderError(DocxConversionError):
    """A diagram could not be rendered. Recovered as a warning."""
    code = 'DIAGRAM_RENDER_FAILED'


class MalformedLinkError(DocxConversionError):
    """A link target is malformed. Recovered as a warning."""
    code = 'MALFORMED_LINK'


class UnknownStyleMappingError(DocxConversionError):
    """A DOCX style has no semantic mapping. Recovered as a warning."""
    code = 'UNKNOWN_STYLE_MAPPING'


class PackageStructureError(DocxConversionError):
    """The DOCX package cannot be built or read. Always fatal."""
    code = 'PACKAGE_STRUCTURE_ERROR'


class InvalidTemplateError(DocxConversionError):
    """Unknown style template or diagram theme identifier."""
    code = 'INVALID_TEMPLATE'


class StyleError(DocxConversionError):
    """Error related to style parsing or application."""
    code = 'STYLE_ERROR'


class SecurityError(DocxConversionError):
    """Error related to security validation (path traversal, size limits, etc.)."""
    code = 'SECURITY_ERROR'


class ConversionCancelledError(DocxConversionError):
    """The caller cancelled a running conversion."""
    code = 'CONVERSION_CANCELLED'


class InvalidOptionsError(DocxConversionError):
    """An option value cannot be parsed or is not one of the allowed values."""
    code = 'INVALID_OPTIONS'
