import io
import os
import sys
import zipfile

import pytest

from asydrop.errors import BadRequestError, NotFoundError, PathEscapeError, RangeNotSatisfiableError
from asydrop.repository.download import DownloadPipeline, content_disposition_attachment, parse_range


@pytest.fixture
def pipeline(serve_root):
    (serve_root / 'notes.txt').write_bytes(b'0123456789')
    (serve_root / 'proj' / 'sub').mkdir(parents=True)
    (serve_root / 'proj' / 'a.txt').write_bytes(b'alpha')
    (serve_root / 'proj' / 'sub' / 'b.txt').write_bytes(b'beta')
    return DownloadPipeline(str(serve_root), chunk_size=4)


def test_prepare_file(pipeline, serve_root):
    result = pipeline.prepare('notes.txt')
    assert result.is_archive is False
    assert result.filename == 'notes.txt'
    assert result.content_type == 'text/plain'
    assert result.size == 10
    assert result.path == os.path.join(str(serve_root), 'notes.txt')


def test_prepare_directory(pipeline):
    result = pipeline.prepare('proj')
    assert result.is_archive is True
    assert result.filename == 'proj.zip'
    assert result.content_type == 'application/zip'
    assert result.size is None


def test_prepare_unknown_type(pipeline, serve_root):
    (serve_root / 'blob.qqq').write_bytes(b'?')
    assert pipeline.prepare('blob.qqq').content_type == 'application/octet-stream'


def test_prepare_missing(pipeline):
    with pytest.raises(BadRequestError):
        pipeline.prepare('')
    with pytest.raises(NotFoundError):
        pipeline.prepare('nothing.txt')


def test_prepare_uses_only_the_basename(pipeline):
    assert pipeline.prepare('../../proj/../notes.txt').filename == 'notes.txt'
    with pytest.raises(NotFoundError):
        pipeline.prepare('../../etc/passwd')
    with pytest.raises(PathEscapeError):
        pipeline.prepare('..')


@pytest.mark.skipif(sys.platform == 'win32', reason='symlinks need privileges on Windows')
def test_symlink_out_of_root_is_not_served(tmp_path, pipeline, serve_root):
    secret = tmp_path / 'secret.txt'
    secret.write_bytes(b'secret')
    os.symlink(str(secret), str(serve_root / 'leak.txt'))
    with pytest.raises(NotFoundError):
        pipeline.prepare('leak.txt')


def test_iter_content_ranges(pipeline):
    result = pipeline.prepare('notes.txt')
    assert b''.join(pipeline.iter_content(result)) == b'0123456789'
    assert b''.join(pipeline.iter_content(result, 2, 6)) == b'23456'
    assert b''.join(pipeline.iter_content(result, 9, 9)) == b'9'


def test_directory_download_is_a_zip(pipeline):
    result = pipeline.prepare('proj')
    data = b''.join(pipeline.iter_content(result))
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        assert sorted(zf.namelist()) == ['a.txt', 'sub/', 'sub/b.txt']
        assert zf.read('sub/b.txt') == b'beta'

    sink = io.BytesIO()
    pipeline.write_to(result, sink)
    with zipfile.ZipFile(sink) as zf:
        assert zf.read('a.txt') == b'alpha'


@pytest.mark.parametrize('header, expected', [
    ('bytes=0-4', (0, 4)),
    ('bytes=5-', (5, 9)),
    ('bytes=-3', (7, 9)),
    ('bytes=-20', (0, 9)),
    ('bytes=3-100', (3, 9)),
    ('bytes=0-1,3-4', None),
    ('items=0-1', None),
    ('bytes=5-2', None),
    ('bytes=a-b', None),
    (None, None),
])
def test_parse_range(header, expected):
    assert parse_range(header, 10) == expected


@pytest.mark.parametrize('header', ['bytes=10-', 'bytes=-0', 'bytes=20-30'])
def test_parse_range_unsatisfiable(header):
    with pytest.raises(RangeNotSatisfiableError) as excinfo:
        parse_range(header, 10)
    assert excinfo.value.size == 10


def test_content_disposition():
    assert content_disposition_attachment('notes.txt') == 'attachment; filename="notes.txt"; filename*=UTF-8\'\'notes.txt'
    value = content_disposition_attachment('résumé "v2".pdf')
    assert 'filename="r_sum_ \\"v2\\".pdf"' in value
    assert "filename*=UTF-8''r%C3%A9sum%C3%A9%20%22v2%22.pdf" in value
