import re
import tempfile
import urllib.parse

from asydrop import logger
from asydrop.errors import BadRequestError

_BOUNDARY_RE = re.compile(r'boundary=(?:"([^"]+)"|([^;\s]+))', re.IGNORECASE)
_NAME_RE = re.compile(r'(?:^|[;\s])name="([^"]*)"', re.IGNORECASE)
_NAME_BARE_RE = re.compile(r'(?:^|[;\s])name=([^;\s"]+)', re.IGNORECASE)
_FILENAME_RE = re.compile(r'filename="([^"]*)"', re.IGNORECASE)
_FILENAME_BARE_RE = re.compile(r'filename=([^;\s"]+)', re.IGNORECASE)
_FILENAME_STAR_RE = re.compile(r"filename\*=([^']*)'[^']*'([^;\s]+)", re.IGNORECASE)

MAX_HEADER_SIZE = 8192


def get_boundary(content_type):
    """
    Extract the multipart boundary from a Content-Type value.

    Raises:
        BadRequestError: not multipart/form-data or no boundary
    """
    if not content_type or not content_type.lower().startswith('multipart/form-data'):
        raise BadRequestError('Only multipart/form-data uploads are supported')
    m = _BOUNDARY_RE.search(content_type)
    if m is None:
        raise BadRequestError('Missing boundary in Content-Type')
    return m.group(1) or m.group(2)


class MultipartStreamProcessor:
    """
    Incremental multipart/form-data parser that keeps one file field.

    Chunks of the request body are fed in as they arrive; boundaries split
    across chunks are handled by keeping a short tail in the buffer. The part
    named `field_name` that carries a filename is spooled into a temporary
    file (in memory up to `spool_size`, then on disk); every other part is
    discarded.

    Args:
        boundary (str): Boundary from the Content-Type header
        field_name (str): Form field holding the upload
        spool_size (int): Bytes kept in memory before spilling to disk
        tempdir (str): Directory for the spilled data
    """

    def __init__(self, boundary, field_name = 'file', spool_size = 1024*1024, tempdir = None):
        self.boundary_bytes = b'--' + boundary.encode('ascii')
        self.delimiter = b'\r\n' + self.boundary_bytes
        self.field_name = field_name
        self.spool_size = spool_size
        self.tempdir = tempdir

        self.buffer = b''
        self.state = 'preamble'  # 'preamble', 'headers', 'body', 'epilogue'
        self.current = None  # sink of the part being read, None when discarding

        self.filename = None  # None: no file field seen, '': field present but no name
        self.file = None
        self.size = 0

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def feed(self, chunk):
        """Process the next chunk of the request body."""
        if self.state == 'epilogue':
            return
        self.buffer += chunk
        while True:
            if self.state == 'preamble':
                if not self._process_boundary():
                    break
            elif self.state == 'headers':
                if not self._process_headers():
                    break
            elif self.state == 'body':
                if not self._process_body():
                    break
            else:
                self.buffer = b''
                break

    def _process_boundary(self):
        pos = self.buffer.find(self.boundary_bytes)
        if pos == -1:
            keep = len(self.boundary_bytes) + 2
            if len(self.buffer) > keep:
                self.buffer = self.buffer[-keep:]
            return False

        after = pos + len(self.boundary_bytes)
        if len(self.buffer) < after + 2:
            return False
        tail = self.buffer[after:after + 2]
        if tail == b'--':
            self.state = 'epilogue'
            self.buffer = b''
            return False
        if tail != b'\r\n':
            raise BadRequestError('Malformed multipart boundary')
        self.buffer = self.buffer[after + 2:]
        self.state = 'headers'
        return True

    def _process_headers(self):
        header_end = self.buffer.find(b'\r\n\r\n')
        if header_end == -1:
            if len(self.buffer) > MAX_HEADER_SIZE:
                raise BadRequestError('Multipart headers too long or malformed')
            return False

        header_section = self.buffer[:header_end]
        self.buffer = self.buffer[header_end + 4:]
        try:
            headers_text = header_section.decode('utf-8')
        except UnicodeDecodeError as e:
            raise BadRequestError('Invalid multipart header encoding: %s' % e)

        name, filename = self._parse_content_disposition(headers_text)
        self.current = None
        if name == self.field_name and filename is not None:
            if self.filename is not None:
                logger.debug('Ignoring additional file part %r' % filename)
            else:
                self.filename = filename
                self.file = tempfile.SpooledTemporaryFile(max_size=self.spool_size, dir=self.tempdir)
                self.current = self.file
        self.state = 'body'
        return True

    def _process_body(self):
        pos = self.buffer.find(self.delimiter)
        if pos == -1:
            # keep enough to recognize a delimiter split across chunks
            write_size = len(self.buffer) - len(self.delimiter) + 1
            if write_size > 0:
                self._write(self.buffer[:write_size])
                self.buffer = self.buffer[write_size:]
            return False

        self._write(self.buffer[:pos])
        self.buffer = self.buffer[pos + 2:]
        self.current = None
        self.state = 'preamble'
        return True

    def _write(self, data):
        if self.current is not None and data:
            self.current.write(data)
            self.size += len(data)

    @staticmethod
    def _parse_content_disposition(headers_text):
        for line in headers_text.split('\r\n'):
            if not line.lower().startswith('content-disposition:'):
                continue
            value = line.split(':', 1)[1]
            m = _NAME_RE.search(value) or _NAME_BARE_RE.search(value)
            name = m.group(1) if m else None

            filename = None
            m = _FILENAME_STAR_RE.search(value)
            if m:
                filename = urllib.parse.unquote(m.group(2), encoding=m.group(1) or 'utf-8', errors='replace')
            else:
                m = _FILENAME_RE.search(value) or _FILENAME_BARE_RE.search(value)
                if m:
                    filename = m.group(1)
            return name, filename
        return None, None

    def finalize(self):
        """
        Check that the body was complete and rewind the spooled file.

        Raises:
            BadRequestError: the closing boundary never arrived
        """
        if self.state != 'epilogue':
            raise BadRequestError('Unexpected end of multipart body')
        if self.file is not None:
            self.file.seek(0)

    def close(self):
        if self.file is not None:
            self.file.close()
            self.file = None
