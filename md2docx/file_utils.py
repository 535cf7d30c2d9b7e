"""
File system helpers used by the converter API and the CLI.
"""

import logging
import os
import re
import uuid

from .config import DEFAULT_CONFIG
from .exceptions import InputFileNotFoundError, NotAFileError
from .models import ValidationIssue, ValidationResult

logger = logging.getLogger('md2docx')

_INVALID_NAME_CHARS_RE = re.compile(r'[<>:"/\\|?*]')
_WHITESPACE_RE = re.compile(r'\s+')
_UNDERSCORES_RE = re.compile(r'_+')


def _check_file(file_path):
    if not os.path.exists(file_path):
        raise InputFileNotFoundError(f"File not found: {file_path}", details={'path': file_path})
    if not os.path.isfile(file_path):
        raise NotAFileError(f"Path is not a file: {file_path}", details={'path': file_path})


def read_file(file_path, binary=False):
    """Read a file as UTF-8 text, or bytes when ``binary`` is set.

    Raises:
        InputFileNotFoundError: If the path does not exist
        NotAFileError: If the path is a directory or special file
    """
    _check_file(file_path)
    if binary:
        with open(file_path, 'rb') as f:
            return f.read()
    with open(file_path, 'r', encoding='utf-8') as f:
        return f.read()


def write_file(file_path, data):
    """Write text or bytes, creating missing parent directories."""
    parent = os.path.dirname(file_path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    if isinstance(data, bytes):
        with open(file_path, 'wb') as f:
            f.write(data)
    else:
        with open(file_path, 'w', encoding='utf-8') as f:
            f.write(data)
    logger.debug("File written: %s", file_path)


def get_extension(file_path):
    return os.path.splitext(file_path)[1].lower()


def validate_file(file_path, allowed_extensions, config=None):
    """Check existence, extension and size of an input file.

    A missing file short-circuits the other checks. Size is never an error;
    files above ``MAX_INPUT_FILE_SIZE`` get a ``LARGE_FILE_SIZE`` warning.
    """
    config = config if config is not None else DEFAULT_CONFIG
    errors = []
    warnings = []

    if not os.path.exists(file_path):
        errors.append(ValidationIssue('FILE_NOT_FOUND', f"File not found: {file_path}"))
        return ValidationResult(is_valid=False, errors=errors, warnings=warnings)

    ext = get_extension(file_path)
    allowed = [e.lower() for e in allowed_extensions]
    if ext not in allowed:
        errors.append(ValidationIssue(
            'INVALID_FILE_TYPE',
            f"Invalid file type: {ext or '(none)'}. Allowed types: {', '.join(allowed)}",
        ))

    size = os.path.getsize(file_path)
    if size > config.MAX_INPUT_FILE_SIZE:
        warnings.append(ValidationIssue(
            'LARGE_FILE_SIZE',
            f"Large file detected: {size / (1024 * 1024):.2f}MB. Processing may be slow.",
        ))

    return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)


def ensure_writable_dir(dir_path):
    """Create ``dir_path`` if needed and verify it accepts writes.

    Raises:
        OSError: If the directory cannot be created or written to
    """
    os.makedirs(dir_path, exist_ok=True)
    check_path = os.path.join(dir_path, f'.write_test_{uuid.uuid4().hex[:8]}')
    try:
        with open(check_path, 'w', encoding='utf-8') as f:
            f.write('test')
    except OSError as e:
        logger.error("Cannot write to directory %s: %s", dir_path, e)
        raise
    os.remove(check_path)
    logger.debug("Directory ready: %s", dir_path)


def sanitize_file_name(file_name):
    """Replace characters that are invalid in file names on common platforms.

    >>> sanitize_file_name('in*valid:file?.txt')
    'in_valid_file_.txt'
    """
    name = _INVALID_NAME_CHARS_RE.sub('_', file_name)
    name = _WHITESPACE_RE.sub('_', name)
    name = _UNDERSCORES_RE.sub('_', name)
    return name.strip('_')


def generate_unique_file_name(original_name, suffix=None):
    """``report.docx`` -> ``report[_suffix]_<8 hex>.docx``."""
    base, ext = os.path.splitext(os.path.basename(original_name))
    suffix_part = f'_{suffix}' if suffix else ''
    return f'{base}{suffix_part}_{uuid.uuid4().hex[:8]}{ext}'
