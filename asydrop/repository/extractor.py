"""
Zip archive extraction with per-entry confinement (prevents Zip Slip).
"""

import os
import zlib
import stat
import zipfile

from asydrop import logger
from asydrop.errors import PathEscapeError, ArchiveSecurityError, ArchiveIOError
from asydrop.repository.limits import ExtractionLimits
from asydrop.repository.pathresolver import SafePathResolver

DEFAULT_DIR_MODE = 0o755
DEFAULT_FILE_MODE = 0o644


def entry_mode(info:zipfile.ZipInfo):
    """Permission bits recorded for `info`, or the default for its kind when none were recorded."""
    mode = stat.S_IMODE(info.external_attr >> 16)
    if mode == 0:
        return DEFAULT_DIR_MODE if info.is_dir() else DEFAULT_FILE_MODE
    return mode


class ArchiveExtractor:
    """
    Materializes every entry of a zip archive below a destination directory.

    Entry names are resolved one by one against the destination, the first
    unsafe entry aborts the whole extraction. Entries written before the
    failure stay on disk.
    """

    def __init__(self, limits:ExtractionLimits = None, chunk_size:int = 32*1024):
        self.limits = limits if limits is not None else ExtractionLimits.from_env()
        self.chunk_size = chunk_size

    def extract(self, archive, destination):
        """
        Extract `archive` into `destination`.

        Args:
            archive (str or file): Path of the zip file, or a seekable binary file object
            destination (str): Directory to extract into, created if missing

        Returns:
            list: Relative names of the extracted entries, in archive order

        Raises:
            ArchiveSecurityError: an entry escapes the destination or a limit is exceeded
            ArchiveIOError: the archive is unreadable or a write failed
        """
        try:
            os.makedirs(destination, exist_ok=True)
        except OSError as e:
            raise ArchiveIOError('Cannot create extraction directory %s: %s' % (destination, e)) from e

        resolver = SafePathResolver(destination)
        logger.debug('Starting extraction to %r' % destination)
        extracted = []
        try:
            with zipfile.ZipFile(archive, 'r') as zf:
                entries = zf.infolist()
                if len(entries) > self.limits.max_entries:
                    raise ArchiveSecurityError('Archive has too many entries: %d (max: %d)' % (len(entries), self.limits.max_entries))

                total_size = 0
                for info in entries:
                    try:
                        target = resolver.resolve_entry(info.filename)
                    except PathEscapeError as e:
                        logger.warning('Illegal path in archive: %r' % info.filename)
                        raise ArchiveSecurityError('Illegal file path in archive: %r' % info.filename) from e

                    if info.is_dir():
                        logger.debug('Creating directory: %r' % target)
                        os.makedirs(target, entry_mode(info) | 0o700, exist_ok=True)
                        # makedirs skips the mode when the directory already exists and is subject to umask
                        os.chmod(target, entry_mode(info) | 0o700)
                    else:
                        total_size += self._extract_file(zf, info, target, total_size)
                    extracted.append(os.path.relpath(target, resolver.root).replace(os.sep, '/'))

        except (zipfile.BadZipFile, zlib.error, NotImplementedError, EOFError) as e:
            raise ArchiveIOError('Invalid or corrupt archive: %s' % e) from e
        except OSError as e:
            raise ArchiveIOError('Extraction failed: %s' % e) from e

        logger.debug('Extraction completed for %r (%d entries)' % (destination, len(extracted)))
        return extracted

    def _extract_file(self, zf:zipfile.ZipFile, info:zipfile.ZipInfo, target, total_size):
        if info.flag_bits & 0x1:
            raise ArchiveIOError('Encrypted entries are not supported: %r' % info.filename)

        os.makedirs(os.path.dirname(target), DEFAULT_DIR_MODE, exist_ok=True)
        mode = entry_mode(info)
        logger.debug('Extracting file: %r to %r' % (info.filename, target))

        flags = os.O_WRONLY | os.O_CREAT | os.O_TRUNC | getattr(os, 'O_NOFOLLOW', 0) | getattr(os, 'O_BINARY', 0)
        fd = os.open(target, flags, mode)
        written = 0
        with os.fdopen(fd, 'wb') as dst, zf.open(info, 'r') as src:
            while True:
                chunk = src.read(self.chunk_size)
                if not chunk:
                    break
                written += len(chunk)
                if written > self.limits.max_file_size:
                    raise ArchiveSecurityError('Entry %r exceeds size limit (max: %d bytes)' % (info.filename, self.limits.max_file_size))
                if total_size + written > self.limits.max_total_size:
                    raise ArchiveSecurityError('Archive exceeds total size limit (max: %d bytes)' % self.limits.max_total_size)
                dst.write(chunk)

        os.chmod(target, mode)
        return written
