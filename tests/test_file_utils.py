"""Tests for file system helpers."""

from __future__ import annotations

import re

import pytest

from md2docx.config import ConversionConfig
from md2docx.exceptions import InputFileNotFoundError, NotAFileError
from md2docx.file_utils import (
    ensure_writable_dir,
    generate_unique_file_name,
    get_extension,
    read_file,
    sanitize_file_name,
    validate_file,
    write_file,
)


class TestReadWrite:
    """Tests for read_file and write_file."""

    def test_text_round_trip(self, tmp_path) -> None:
        path = tmp_path / 'nested' / 'deeper' / 'note.md'
        write_file(str(path), "# héllo\n")
        assert read_file(str(path)) == "# héllo\n"

    def test_bytes(self, tmp_path) -> None:
        path = tmp_path / 'data.bin'
        write_file(str(path), b'\x00\x01')
        assert read_file(str(path), binary=True) == b'\x00\x01'

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(InputFileNotFoundError) as exc_info:
            read_file(str(tmp_path / 'missing.md'))
        assert exc_info.value.code == 'FILE_NOT_FOUND'

    def test_directory_is_not_a_file(self, tmp_path) -> None:
        with pytest.raises(NotAFileError):
            read_file(str(tmp_path))


class TestValidateFile:
    """Tests for validate_file."""

    def test_valid(self, tmp_path) -> None:
        path = tmp_path / 'doc.MD'
        path.write_text("x", encoding='utf-8')
        result = validate_file(str(path), ['.md'])
        assert result.is_valid
        assert result.errors == []

    def test_missing_short_circuits(self, tmp_path) -> None:
        result = validate_file(str(tmp_path / 'gone.txt'), ['.md'])
        assert [e.code for e in result.errors] == ['FILE_NOT_FOUND']

    def test_wrong_type(self, tmp_path) -> None:
        path = tmp_path / 'doc.txt'
        path.write_text("x", encoding='utf-8')
        result = validate_file(str(path), ['.md', '.markdown'])
        assert not result.is_valid
        assert [e.code for e in result.errors] == ['INVALID_FILE_TYPE']

    def test_large_file_is_only_a_warning(self, tmp_path) -> None:
        path = tmp_path / 'big.md'
        path.write_text("x" * 64, encoding='utf-8')
        config = ConversionConfig()
        config.MAX_INPUT_FILE_SIZE = 16
        result = validate_file(str(path), ['.md'], config)
        assert result.is_valid
        assert [w.code for w in result.warnings] == ['LARGE_FILE_SIZE']


class TestNames:
    """Tests for file name helpers."""

    def test_extension(self) -> None:
        assert get_extension('A/B/Report.DOCX') == '.docx'
        assert get_extension('README') == ''

    @pytest.mark.parametrize("name, expected", [
        ('in*valid:file?.txt', 'in_valid_file_.txt'),
        ('my  report.md', 'my_report.md'),
        ('a/b\\c.md', 'a_b_c.md'),
    ])
    def test_sanitize(self, name, expected) -> None:
        assert sanitize_file_name(name) == expected

    def test_unique_name(self) -> None:
        name = generate_unique_file_name('/tmp/report.docx', 'final')
        assert re.fullmatch(r'report_final_[0-9a-f]{8}\.docx', name)
        assert generate_unique_file_name('report.docx') != generate_unique_file_name('report.docx')

    def test_ensure_writable_dir(self, tmp_path) -> None:
        target = tmp_path / 'a' / 'b'
        ensure_writable_dir(str(target))
        assert target.is_dir()
        assert list(target.iterdir()) == []
