"""
Download pipeline: resolve a requested top-level name and produce either the
raw file bytes or a zip archive of the directory.
"""

import os
import stat
import mimetypes
import urllib.parse
from dataclasses import dataclass
from typing import Optional

from asydrop import logger
from asydrop.errors import BadRequestError, NotFoundError, InternalIOError, RangeNotSatisfiableError
from asydrop.repository.builder import ArchiveBuilder
from asydrop.repository.pathresolver import SafePathResolver


@dataclass
class DownloadResult:
    name: str
    path: str
    filename: str
    content_type: str
    is_archive: bool
    size: Optional[int] = None


def content_disposition_attachment(filename):
    """
    Build a Content-Disposition header value for any filename.
    RFC 6266: ASCII fallback in filename, UTF-8 percent-encoded filename*.
    """
    fallback = ''.join((ch if 0x20 <= ord(ch) < 0x7F else '_') for ch in filename)
    fallback = fallback.replace('\\', '\\\\').replace('"', '\\"')
    filename_star = "UTF-8''" + urllib.parse.quote(filename, safe='')
    return 'attachment; filename="%s"; filename*=%s' % (fallback, filename_star)


def parse_range(header, size):
    """
    Parse a single-range `Range` header against a file of `size` bytes.

    Args:
        header (str): Raw header value, e.g. 'bytes=0-99', 'bytes=100-', 'bytes=-50'
        size (int): File size

    Returns:
        tuple or None: (start, end) inclusive, or None if the header should be ignored

    Raises:
        RangeNotSatisfiableError: syntactically valid but outside the file
    """
    if not header or not header.startswith('bytes='):
        return None
    ranges = header[6:].strip()
    if ',' in ranges or '-' not in ranges:
        return None

    first, last = ranges.split('-', 1)
    first = first.strip()
    last = last.strip()
    try:
        if first == '':
            if last == '':
                return None
            suffix = int(last)
            if suffix <= 0 or size == 0:
                raise RangeNotSatisfiableError(size)
            return max(size - suffix, 0), size - 1

        start = int(first)
        end = int(last) if last != '' else size - 1
    except ValueError:
        return None

    if start < 0 or end < start:
        return None
    if start >= size:
        raise RangeNotSatisfiableError(size)
    return start, min(end, size - 1)


class DownloadPipeline:
    def __init__(self, serve_root, chunk_size:int = 512*1024):
        self.serve_root = os.path.abspath(serve_root)
        self.resolver = SafePathResolver(self.serve_root)
        self.chunk_size = chunk_size

    def prepare(self, requested):
        """
        Resolve `requested` and describe what would be sent.

        Raises:
            BadRequestError: no path given
            PathEscapeError: the name has no usable basename
            NotFoundError: nothing (readable) exists under that name
        """
        if not requested:
            raise BadRequestError('Missing path parameter')

        path = self.resolver.resolve_top_level(requested)
        real_root = os.path.realpath(self.serve_root)
        if not SafePathResolver(real_root).contains(os.path.realpath(path)):
            logger.warning('Refusing download of %r, it links outside the serve root' % path)
            raise NotFoundError()

        try:
            st = os.stat(path)
        except (FileNotFoundError, NotADirectoryError):
            raise NotFoundError()
        except OSError as e:
            raise InternalIOError('Failed to stat %s: %s' % (path, e)) from e

        name = os.path.basename(path)
        if stat.S_ISDIR(st.st_mode):
            return DownloadResult(name, path, name + '.zip', 'application/zip', True)
        if not stat.S_ISREG(st.st_mode):
            raise NotFoundError()

        content_type, _ = mimetypes.guess_type(name)
        return DownloadResult(name, path, name, content_type or 'application/octet-stream', False, st.st_size)

    def iter_content(self, result:DownloadResult, start:int = 0, end:int = None):
        """Yield the body for `result`; `start`/`end` (inclusive) select a byte range of a plain file."""
        if result.is_archive:
            yield from ArchiveBuilder(result.path).iter_chunks()
            return

        if end is None:
            end = result.size - 1
        remaining = end - start + 1
        try:
            with open(result.path, 'rb') as f:
                if start > 0:
                    f.seek(start)
                while remaining > 0:
                    chunk = f.read(min(self.chunk_size, remaining))
                    if not chunk:
                        break
                    remaining -= len(chunk)
                    yield chunk
        except OSError as e:
            raise InternalIOError('Error reading %s: %s' % (result.path, e)) from e

    def write_to(self, result:DownloadResult, sink):
        """Write the full body for `result` into `sink` (anything with `write()`)."""
        if result.is_archive:
            ArchiveBuilder(result.path).write_to(sink)
            return
        for chunk in self.iter_content(result):
            sink.write(chunk)
