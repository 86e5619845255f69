"""
Upload pipeline: classify an incoming upload, then either store it under a
collision-free name or extract it as a folder.

    Received -> Classified -> DirectStore | ExtractFolder -> Complete | Failed
"""

import os
import shutil
import tempfile
from dataclasses import dataclass

from asydrop import logger
from asydrop.errors import BadRequestError, PathEscapeError, InternalIOError
from asydrop.repository.extractor import ArchiveExtractor
from asydrop.repository.naming import unique_name, unique_folder_name
from asydrop.repository.pathresolver import SafePathResolver

DEFAULT_MARKER_EXTENSION = '.up'


@dataclass
class ResolvedTarget:
    final_name: str
    absolute_path: str
    is_archive_extraction: bool


class UploadPipeline:
    """
    Stores uploads below the serve root.

    Args:
        serve_root (str): Directory uploads are confined to
        marker_extension (str): Extension (case-insensitive) marking a zipped folder to extract
        extractor (ArchiveExtractor): Extractor used for folder uploads
        chunk_size (int): Copy buffer size
        tempdir (str): Where folder archives are buffered before extraction (system default if None)
    """

    def __init__(self, serve_root, marker_extension:str = DEFAULT_MARKER_EXTENSION, extractor:ArchiveExtractor = None, chunk_size:int = 64*1024, tempdir:str = None):
        self.serve_root = os.path.abspath(serve_root)
        self.resolver = SafePathResolver(self.serve_root)
        if not marker_extension.startswith('.'):
            marker_extension = '.' + marker_extension
        self.marker_extension = marker_extension.lower()
        self.extractor = extractor if extractor is not None else ArchiveExtractor()
        self.chunk_size = chunk_size
        self.tempdir = tempdir

    def classify(self, raw_filename):
        """
        Reduce the client-supplied name to its basename and decide the route.

        Returns:
            tuple: (basename, is_archive_extraction)

        Raises:
            BadRequestError: empty filename
            PathEscapeError: the name has no usable basename ('/', '..', ...)
        """
        if not raw_filename:
            raise BadRequestError('Empty filename')
        basename = SafePathResolver.basename(raw_filename)
        if basename in ('', '.', '..'):
            raise PathEscapeError('Invalid filename: %r' % raw_filename)
        ext = os.path.splitext(basename)[1]
        return basename, ext.lower() == self.marker_extension

    def store(self, raw_filename, stream):
        """
        Run the whole pipeline for one upload.

        Args:
            raw_filename (str): Filename as sent by the client
            stream (file): Readable binary stream with the upload content

        Returns:
            ResolvedTarget: Where the upload ended up
        """
        basename, is_folder = self.classify(raw_filename)
        logger.info('Uploading file: %r' % raw_filename)
        if is_folder:
            return self._extract_folder(basename, stream)
        return self._direct_store(basename, stream)

    def _direct_store(self, basename, stream):
        final_name = unique_name(self.serve_root, basename)
        target = self.resolver.resolve_top_level(final_name)
        logger.debug('Saving file to: %r' % target)
        try:
            with open(target, 'wb') as dst:
                shutil.copyfileobj(stream, dst, self.chunk_size)
        except OSError as e:
            logger.error('Error saving file %r: %s' % (target, e))
            raise InternalIOError('Failed to save file: %s' % e) from e

        logger.info('File saved successfully: %r' % final_name)
        return ResolvedTarget(final_name, target, False)

    def _extract_folder(self, basename, stream):
        folder_name = basename[:-len(self.marker_extension)]
        if folder_name in ('', '.', '..'):
            raise BadRequestError('Invalid folder name: %r' % basename)

        try:
            buffer = tempfile.NamedTemporaryFile(prefix='asydrop-', suffix='.zip', dir=self.tempdir)
        except OSError as e:
            raise InternalIOError('Failed to create temporary file: %s' % e) from e

        with buffer:
            logger.debug('Buffering folder archive in %s' % buffer.name)
            try:
                shutil.copyfileobj(stream, buffer, self.chunk_size)
                buffer.flush()
                buffer.seek(0)
            except OSError as e:
                raise InternalIOError('Failed to buffer folder archive: %s' % e) from e

            final_name = unique_folder_name(self.serve_root, folder_name)
            target = self.resolver.resolve_top_level(final_name)
            logger.info('Extracting folder archive to directory: %r' % target)
            self.extractor.extract(buffer, target)

        logger.info('Folder extracted successfully to %r' % target)
        return ResolvedTarget(final_name, target, True)
