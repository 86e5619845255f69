import io
import zipfile

import pytest


def build_zip(entries):
    """entries: name -> bytes for files, None for directories."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, 'w', compression=zipfile.ZIP_DEFLATED) as zf:
        for name, content in entries.items():
            if content is None:
                zf.writestr(zipfile.ZipInfo(name if name.endswith('/') else name + '/'), b'')
            else:
                zf.writestr(name, content)
    return buffer.getvalue()


def build_multipart(boundary, parts):
    """parts: list of (field name, filename or None, content bytes)."""
    out = b''
    for name, filename, content in parts:
        disposition = 'form-data; name="%s"' % name
        if filename is not None:
            disposition += '; filename="%s"' % filename
        out += b'--' + boundary.encode('ascii') + b'\r\n'
        out += ('Content-Disposition: %s\r\n' % disposition).encode('utf-8')
        if filename is not None:
            out += b'Content-Type: application/octet-stream\r\n'
        out += b'\r\n' + content + b'\r\n'
    out += b'--' + boundary.encode('ascii') + b'--\r\n'
    return out


@pytest.fixture
def serve_root(tmp_path):
    root = tmp_path / 'serve'
    root.mkdir()
    return root


@pytest.fixture
def make_zip():
    return build_zip


@pytest.fixture
def multipart_body():
    return build_multipart
