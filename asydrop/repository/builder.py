"""
Streaming zip creation for directory downloads.

The archive is written to a sink that only needs `write()` (and `flush()`),
so it can go straight into a socket-bound response without a temporary file.
zipfile falls back to data descriptors when the sink is not seekable.
"""

import os
import zipfile

from asydrop import logger
from asydrop.errors import ArchiveIOError


class ChunkSink:
    """Write-only sink collecting the produced bytes until they are drained."""
    def __init__(self):
        self.chunks = []

    def write(self, data):
        if data:
            self.chunks.append(bytes(data))
        return len(data)

    def flush(self):
        return

    def drain(self):
        chunks, self.chunks = self.chunks, []
        return chunks


def _raise_walk_error(err):
    raise err


class ArchiveBuilder:
    def __init__(self, source, chunk_size:int = 32*1024, compression:int = zipfile.ZIP_DEFLATED, compresslevel:int = 6):
        self.source = os.path.abspath(source)
        self.chunk_size = chunk_size
        self.compression = compression
        self.compresslevel = compresslevel
        self.skipped = []

    def iter_entries(self):
        """
        Walk the source tree top-down in sorted order.

        Yields:
            tuple: (archive name, absolute path, is_directory); directory names end with '/'
        """
        for root, dirs, files in os.walk(self.source, onerror=_raise_walk_error):
            rel_root = os.path.relpath(root, self.source)
            kept = []
            for name in sorted(dirs):
                path = os.path.join(root, name)
                if os.path.islink(path):
                    logger.debug('Skipping symlinked directory %s' % path)
                    self.skipped.append(path)
                    continue
                kept.append(name)
            dirs[:] = kept

            if rel_root != '.':
                yield rel_root.replace(os.sep, '/') + '/', root, True

            for name in sorted(files):
                path = os.path.join(root, name)
                if os.path.islink(path):
                    logger.debug('Skipping symlink %s' % path)
                    self.skipped.append(path)
                    continue
                arcname = name if rel_root == '.' else os.path.join(rel_root, name)
                yield arcname.replace(os.sep, '/'), path, False

    def _add_directory(self, zf:zipfile.ZipFile, arcname, path):
        zinfo = zipfile.ZipInfo.from_file(path, arcname)
        zf.writestr(zinfo, b'')

    def _add_file(self, zf:zipfile.ZipFile, arcname, path):
        zinfo = zipfile.ZipInfo.from_file(path, arcname)
        zinfo.compress_type = self.compression
        with open(path, 'rb') as src, zf.open(zinfo, 'w') as dst:
            while True:
                chunk = src.read(self.chunk_size)
                if not chunk:
                    break
                dst.write(chunk)
                yield

    def _build(self, zf:zipfile.ZipFile):
        try:
            for arcname, path, is_dir in self.iter_entries():
                if is_dir:
                    self._add_directory(zf, arcname, path)
                    yield
                    continue
                yield from self._add_file(zf, arcname, path)
                yield
        except OSError as e:
            logger.debug('Archive build of %s aborted: %s' % (self.source, e))
            raise ArchiveIOError('Failed to archive %s: %s' % (self.source, e)) from e

    def write_to(self, sink):
        """
        Write the whole archive to `sink`.

        Raises:
            ArchiveIOError: a file or directory became unreadable during the walk
        """
        with zipfile.ZipFile(sink, 'w', compression=self.compression, compresslevel=self.compresslevel) as zf:
            for _ in self._build(zf):
                pass

    def iter_chunks(self):
        """Yield the archive as a sequence of byte chunks while it is being built."""
        sink = ChunkSink()
        with zipfile.ZipFile(sink, 'w', compression=self.compression, compresslevel=self.compresslevel) as zf:
            for _ in self._build(zf):
                yield from sink.drain()
        yield from sink.drain()
