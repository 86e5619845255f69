import io
import os
import sys
import zipfile

import pytest

from asydrop.errors import ArchiveSecurityError, ArchiveIOError
from asydrop.repository.extractor import ArchiveExtractor
from asydrop.repository.limits import ExtractionLimits


def test_extract_files_and_directories(tmp_path, make_zip):
    data = make_zip({
        'a.txt': b'alpha',
        'sub/': None,
        'sub/b.txt': b'beta',
        'empty/': None,
        'deep/er/c.txt': b'gamma',
    })
    dest = tmp_path / 'dest'
    extracted = ArchiveExtractor(ExtractionLimits()).extract(io.BytesIO(data), str(dest))

    assert extracted == ['a.txt', 'sub', 'sub/b.txt', 'empty', 'deep/er/c.txt']
    assert (dest / 'a.txt').read_bytes() == b'alpha'
    assert (dest / 'sub' / 'b.txt').read_bytes() == b'beta'
    assert (dest / 'empty').is_dir()
    assert (dest / 'deep' / 'er' / 'c.txt').read_bytes() == b'gamma'


@pytest.mark.parametrize('entry, outside', [
    ('../x', 'x'),
    ('a/../../b', 'b'),
    ('/etc/x', None),
    ('C:\\x', None),
])
def test_traversal_entries_are_rejected(tmp_path, make_zip, entry, outside):
    data = make_zip({entry: b'evil'})
    dest = tmp_path / 'dest'
    with pytest.raises(ArchiveSecurityError):
        ArchiveExtractor(ExtractionLimits()).extract(io.BytesIO(data), str(dest))

    assert list(dest.iterdir()) == []
    if outside is not None:
        assert not (tmp_path / outside).exists()


def test_entries_before_the_bad_one_stay(tmp_path, make_zip):
    data = make_zip({'ok.txt': b'fine', '../evil.txt': b'evil'})
    dest = tmp_path / 'dest'
    with pytest.raises(ArchiveSecurityError):
        ArchiveExtractor(ExtractionLimits()).extract(io.BytesIO(data), str(dest))
    assert (dest / 'ok.txt').read_bytes() == b'fine'
    assert not (tmp_path / 'evil.txt').exists()


def test_entry_count_limit(tmp_path, make_zip):
    data = make_zip({'a': b'1', 'b': b'2', 'c': b'3'})
    with pytest.raises(ArchiveSecurityError):
        ArchiveExtractor(ExtractionLimits(max_entries=2)).extract(io.BytesIO(data), str(tmp_path / 'dest'))


def test_file_size_limit(tmp_path, make_zip):
    data = make_zip({'big.bin': b'x' * 20})
    with pytest.raises(ArchiveSecurityError):
        ArchiveExtractor(ExtractionLimits(max_file_size=10)).extract(io.BytesIO(data), str(tmp_path / 'dest'))


def test_total_size_limit(tmp_path, make_zip):
    data = make_zip({'a.bin': b'x' * 10, 'b.bin': b'y' * 10})
    with pytest.raises(ArchiveSecurityError):
        ArchiveExtractor(ExtractionLimits(max_total_size=15)).extract(io.BytesIO(data), str(tmp_path / 'dest'))


def test_corrupt_archive(tmp_path):
    with pytest.raises(ArchiveIOError):
        ArchiveExtractor(ExtractionLimits()).extract(io.BytesIO(b'this is not a zip file'), str(tmp_path / 'dest'))


@pytest.mark.skipif(sys.platform == 'win32', reason='POSIX permission bits')
def test_recorded_mode_is_applied(tmp_path):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, 'w') as zf:
        info = zipfile.ZipInfo('script.sh')
        info.external_attr = (0o100750) << 16
        zf.writestr(info, b'#!/bin/sh\n')
        zf.writestr('plain.txt', b'no mode recorded')
    dest = tmp_path / 'dest'
    ArchiveExtractor(ExtractionLimits()).extract(io.BytesIO(buffer.getvalue()), str(dest))

    assert os.stat(dest / 'script.sh').st_mode & 0o777 == 0o750
    assert (dest / 'plain.txt').read_bytes() == b'no mode recorded'


@pytest.mark.skipif(sys.platform == 'win32', reason='POSIX permission bits')
def test_directory_mode_applies_to_existing_directory(tmp_path):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, 'w') as zf:
        zf.writestr('d/x.txt', b'created before its directory entry')
        info = zipfile.ZipInfo('d/')
        info.external_attr = (0o40750 << 16) | 0x10
        zf.writestr(info, b'')
    dest = tmp_path / 'dest'
    ArchiveExtractor(ExtractionLimits()).extract(io.BytesIO(buffer.getvalue()), str(dest))

    assert os.stat(dest / "d").st_mode & 0o777 == 0o750
    assert (dest / "d" / "x.txt").read_bytes() == b"created before its directory entry"


def test_limits_from_env(monkeypatch):
    monkeypatch.setenv('ASYDROP_EXTRACT_MAX_ENTRIES', '5')
    monkeypatch.setenv('ASYDROP_EXTRACT_MAX_TOTAL_SIZE', 'lots')
    monkeypatch.setenv('ASYDROP_EXTRACT_MAX_FILE_SIZE', '-1')
    limits = ExtractionLimits.from_env()
    assert limits.max_entries == 5
    assert limits.max_total_size == ExtractionLimits().max_total_size
    assert limits.max_file_size == ExtractionLimits().max_file_size
