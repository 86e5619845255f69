import io
import os
import sys
import zipfile

import pytest

from asydrop.errors import ArchiveIOError
from asydrop.repository.builder import ArchiveBuilder
from asydrop.repository.extractor import ArchiveExtractor
from asydrop.repository.limits import ExtractionLimits


@pytest.fixture
def source_tree(tmp_path):
    src = tmp_path / 'project'
    (src / 'sub').mkdir(parents=True)
    (src / 'empty').mkdir()
    (src / 'a.txt').write_bytes(b'alpha')
    (src / 'sub' / 'b.txt').write_bytes(b'beta' * 1000)
    return src


def test_entries_are_sorted_and_relative(source_tree):
    names = [arcname for arcname, _, _ in ArchiveBuilder(str(source_tree)).iter_entries()]
    assert names == ['a.txt', 'empty/', 'sub/', 'sub/b.txt']


def test_round_trip_keeps_empty_directories(tmp_path, source_tree):
    sink = io.BytesIO()
    ArchiveBuilder(str(source_tree)).write_to(sink)

    dest = tmp_path / 'copy'
    ArchiveExtractor(ExtractionLimits()).extract(io.BytesIO(sink.getvalue()), str(dest))

    assert (dest / 'a.txt').read_bytes() == b'alpha'
    assert (dest / 'sub' / 'b.txt').read_bytes() == b'beta' * 1000
    assert (dest / 'empty').is_dir()
    assert list((dest / 'empty').iterdir()) == []


def test_iter_chunks_produces_a_valid_archive(source_tree):
    data = b''.join(ArchiveBuilder(str(source_tree)).iter_chunks())
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        assert zf.testzip() is None
        assert sorted(zf.namelist()) == ['a.txt', 'empty/', 'sub/', 'sub/b.txt']
        assert zf.read('sub/b.txt') == b'beta' * 1000


def test_empty_directory_builds_an_empty_archive(tmp_path):
    (tmp_path / 'nothing').mkdir()
    data = b''.join(ArchiveBuilder(str(tmp_path / 'nothing')).iter_chunks())
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        assert zf.namelist() == []


@pytest.mark.skipif(sys.platform == 'win32', reason='symlinks need privileges on Windows')
def test_symlinks_are_skipped(tmp_path, source_tree):
    secret = tmp_path / 'secret.txt'
    secret.write_bytes(b'outside')
    os.symlink(str(secret), str(source_tree / 'link.txt'))
    os.symlink(str(tmp_path), str(source_tree / 'linkdir'))

    builder = ArchiveBuilder(str(source_tree))
    data = b''.join(builder.iter_chunks())
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        names = zf.namelist()
    assert 'link.txt' not in names
    assert not any(name.startswith('linkdir') for name in names)
    assert sorted(builder.skipped) == sorted([str(source_tree / 'link.txt'), str(source_tree / 'linkdir')])


def test_missing_source_raises(tmp_path):
    with pytest.raises(ArchiveIOError):
        ArchiveBuilder(str(tmp_path / 'missing')).write_to(io.BytesIO())


def test_file_removed_during_walk_raises(tmp_path):
    src = tmp_path / 'project'
    src.mkdir()
    (src / 'a.txt').write_bytes(b'alpha' * 1000)
    (src / 'b.txt').write_bytes(b'beta')

    chunks = ArchiveBuilder(str(src)).iter_chunks()
    assert next(chunks)
    (src / 'b.txt').unlink()
    with pytest.raises(ArchiveIOError):
        for _ in chunks:
            pass
