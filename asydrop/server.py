import os
import sys
import asyncio
import logging
import urllib.parse

import h11

from asydrop import logger
from asydrop._version import __version__
from asydrop.errors import RepositoryError, BadRequestError, PayloadTooLargeError, RangeNotSatisfiableError, InternalIOError
from asydrop.pages import render_listing
from asydrop.repository.download import DownloadPipeline, content_disposition_attachment, parse_range
from asydrop.repository.extractor import ArchiveExtractor
from asydrop.repository.limits import ExtractionLimits
from asydrop.repository.listing import list_directory
from asydrop.repository.multipart import MultipartStreamProcessor, get_boundary
from asydrop.repository.upload import UploadPipeline, DEFAULT_MARKER_EXTENSION
from asydrop.unicomm.common.target import UniTarget, UniProto
from asydrop.unicomm.common.unissl import UniSSL
from asydrop.unicomm.protocol.server.http.httpserver import HTTPServer, HTTPServerHandler

DEFAULT_MAX_UPLOAD_SIZE = 2*1024*1024*1024


def get_header(event, name:bytes):
    """Returns the first value of header `name` (lowercase bytes) as str, or None."""
    for hname, value in event.headers:
        if hname == name:
            return value.decode('latin-1')
    return None


class FileRepositoryHandler(HTTPServerHandler):
    """
    HTTP handler for the file repository.

    Routes:
    - GET /                    directory listing with the upload form
    - POST /upload             multipart upload, field `file`
    - GET /download?path=name  file download, or a directory as a ZIP archive

    Args:
        serve_root (str): Directory all uploads and downloads are confined to
        marker_extension (str): Extension marking a zipped folder upload
        max_upload_size (int): Maximum request body size for uploads in bytes
        limits (ExtractionLimits): Limits applied when extracting folder uploads
        tempdir (str): Directory for spooled uploads (system default if None)
    """

    def __init__(self, serve_root, marker_extension=DEFAULT_MARKER_EXTENSION, max_upload_size=DEFAULT_MAX_UPLOAD_SIZE,
                 limits=None, tempdir=None):
        super().__init__()
        self.serve_root = os.path.abspath(serve_root)
        self.marker_extension = marker_extension
        self.max_upload_size = max_upload_size
        self.tempdir = tempdir
        self.upload = UploadPipeline(
            self.serve_root,
            marker_extension=marker_extension,
            extractor=ArchiveExtractor(limits),
            tempdir=tempdir,
        )
        self.download = DownloadPipeline(self.serve_root)

    async def _process_request(self, wrapper, request):
        try:
            await super()._process_request(wrapper, request)
        except RepositoryError as e:
            if not self.can_respond():
                logger.error('Failed after the response started, closing connection: %s' % e.message)
                raise
            logger.debug('Request failed with %s: %s' % (e.status_code, e.message))
            headers = []
            if isinstance(e, RangeNotSatisfiableError):
                headers.append(("Content-Range", "bytes */%d" % e.size))
            if isinstance(e, PayloadTooLargeError):
                headers.append(("Connection", "close"))
            await self.send_error(e.status_code, e.message, headers)
        except (ConnectionError, h11.RemoteProtocolError):
            raise
        except Exception:
            logger.exception('Unexpected error while handling %s %s' % (request.method, request.target))
            if not self.can_respond():
                raise
            await self.send_error(500, 'Internal Server Error')

    async def do_GET(self, event):
        url_parts = urllib.parse.urlsplit(event.target.decode('latin-1'))
        if url_parts.path == '/':
            return await self.serve_listing()
        if url_parts.path == '/download':
            params = urllib.parse.parse_qs(url_parts.query)
            requested = params.get('path', [''])[0]
            return await self.serve_download(requested, get_header(event, b'range'))
        await self.send_error(404, 'Not Found')

    async def do_POST(self, event):
        url_parts = urllib.parse.urlsplit(event.target.decode('latin-1'))
        if url_parts.path == '/upload':
            return await self.handle_upload(event)
        await self.send_error(404, 'Not Found')

    async def serve_listing(self):
        listing = list_directory(self.serve_root)
        body = render_listing(listing, self.marker_extension).encode('utf-8')
        await self.send_response(200, body, content_type='text/html; charset=utf-8')

    async def handle_upload(self, event):
        """
        Stream the multipart body into a spooled file, then hand the file part
        to the upload pipeline. Answers 303 to / on success.
        """
        content_length = get_header(event, b'content-length')
        if content_length is not None and int(content_length) > self.max_upload_size:
            raise PayloadTooLargeError('Upload exceeds the maximum size of %d bytes' % self.max_upload_size)

        boundary = get_boundary(get_header(event, b'content-type'))
        received = 0
        with MultipartStreamProcessor(boundary, tempdir=self.tempdir) as parser:
            async for chunk in self._wrapper.iter_body():
                received += len(chunk)
                if received > self.max_upload_size:
                    raise PayloadTooLargeError('Upload exceeds the maximum size of %d bytes' % self.max_upload_size)
                parser.feed(chunk)

            if received == 0:
                raise BadRequestError('No file in form')
            parser.finalize()
            if parser.filename is None:
                raise BadRequestError('No file in form')
            if parser.filename == '':
                raise BadRequestError('Empty filename')

            logger.debug('Received %d bytes for %r' % (parser.size, parser.filename))
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self.upload.store, parser.filename, parser.file)

        await self.send_redirect('/')

    @staticmethod
    async def next_chunk(chunks):
        """Advance a blocking chunk generator in the default executor, None when exhausted."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, next, chunks, None)

    async def serve_download(self, requested, range_header=None):
        result = self.download.prepare(requested)
        headers = [
            ("Content-Type", result.content_type),
            ("Content-Disposition", content_disposition_attachment(result.filename)),
        ]

        if result.is_archive:
            logger.info('Sending directory %r as %r' % (result.path, result.filename))
            chunks = self.download.iter_content(result)
            # errors before the first chunk still get a proper status code
            chunk = await self.next_chunk(chunks)
            await self.start_response(200, headers)
            while chunk is not None:
                await self.send_data(chunk)
                chunk = await self.next_chunk(chunks)
            await self.end_response()
            return

        status_code = 200
        start, end = 0, result.size - 1
        byte_range = parse_range(range_header, result.size)
        if byte_range is not None:
            status_code = 206
            start, end = byte_range
            headers.append(("Content-Range", "bytes %d-%d/%d" % (start, end, result.size)))
        headers.append(("Accept-Ranges", "bytes"))
        headers.append(("Content-Length", str(max(end - start + 1, 0))))

        logger.info('Sending file %r (%s bytes)' % (result.path, result.size))
        await self.start_response(status_code, headers)
        if result.size > 0:
            chunks = self.download.iter_content(result, start, end)
            chunk = await self.next_chunk(chunks)
            while chunk is not None:
                await self.send_data(chunk)
                chunk = await self.next_chunk(chunks)
        await self.end_response()


def build_target(host, port, port_attempts=100, use_ssl=False, ssl_cert=None, ssl_key=None):
    if use_ssl is False:
        return UniTarget(host, port, UniProto.SERVER_TCP, port_attempts=port_attempts)
    if ssl_cert is not None:
        ssl_ctx = UniSSL(ssl_cert, ssl_key)
    else:
        ssl_ctx = UniSSL.get_selfsigned_server('localhost' if host in ('0.0.0.0', '::', '') else host)
    return UniTarget(host, port, UniProto.SERVER_SSL_TCP, ssl_ctx=ssl_ctx, port_attempts=port_attempts)


def create_file_server(target:UniTarget, serve_root, log_callback=None, marker_extension=DEFAULT_MARKER_EXTENSION,
                       max_upload_size=DEFAULT_MAX_UPLOAD_SIZE, limits=None):
    """
    Build an HTTPServer serving `serve_root` on `target`. The server is not
    started; use it as an async context manager or await `serve()`.
    """
    if limits is None:
        limits = ExtractionLimits.from_env()
    handler_factory = lambda: FileRepositoryHandler(
        serve_root,
        marker_extension=marker_extension,
        max_upload_size=max_upload_size,
        limits=limits,
    )
    return HTTPServer(handler_factory, target, log_callback=log_callback)


async def run_file_server(serve_root='.', host='0.0.0.0', port=8080, debug=False, port_attempts=100,
                          max_upload_size=DEFAULT_MAX_UPLOAD_SIZE, marker_extension=DEFAULT_MARKER_EXTENSION,
                          use_ssl=False, ssl_cert=None, ssl_key=None):
    """
    Run the file repository server until cancelled.

    Args:
        serve_root (str): Directory to serve, created if missing
        host (str): Host to bind to
        port (int): First port to try
        debug (bool): Enable debug logging
        port_attempts (int): How many ascending ports to try
        max_upload_size (int): Maximum upload request body in bytes
        marker_extension (str): Extension marking a zipped folder upload
        use_ssl (bool): Serve HTTPS
        ssl_cert (str): PEM certificate, a self-signed one is generated if None
        ssl_key (str): PEM private key
    """
    log_callback = None
    if debug:
        async def log_callback(msg):
            logger.debug('[HTTP] %s' % msg)

    serve_root = os.path.abspath(serve_root)
    try:
        os.makedirs(serve_root, exist_ok=True)
    except OSError as e:
        raise InternalIOError('Failed to create directory %s: %s' % (serve_root, e)) from e

    target = build_target(host, port, port_attempts, use_ssl, ssl_cert, ssl_key)
    server = create_file_server(
        target,
        serve_root,
        log_callback=log_callback,
        marker_extension=marker_extension,
        max_upload_size=max_upload_size,
    )
    async with server:
        logger.info('Serving %s on %s://%s:%s' % (serve_root, target.get_scheme(), host, server.port))
        await asyncio.Event().wait()


def main():
    """
    Main entry point for the file repository server.
    """
    import argparse

    parser = argparse.ArgumentParser(
        description='asydrop - file upload/download server with folder upload via zipped archives',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
  %(prog)s                                 # Serve the current directory on 0.0.0.0:8080
  %(prog)s /srv/share                      # Serve (and create) /srv/share
  %(prog)s /srv/share --port 9000          # Start port hunting at 9000
  %(prog)s /srv/share --ssl                # HTTPS with a self-signed certificate
  %(prog)s /srv/share --debug              # Enable debug logging

Folder upload: zip the folder, rename it to <name>.up and upload it.
        ''')

    parser.add_argument(
        'directory',
        nargs='?',
        default=None,
        help='Directory to serve (default: current directory)'
    )
    parser.add_argument(
        '--dir',
        dest='dir_option',
        default=None,
        help='Directory to serve, same as the positional argument'
    )
    parser.add_argument(
        '--host', '-H',
        default='0.0.0.0',
        help='Host to bind to (default: 0.0.0.0)'
    )
    parser.add_argument(
        '--port', '-p',
        type=int,
        default=8080,
        help='First port to try (default: 8080)'
    )
    parser.add_argument(
        '--port-attempts',
        type=int,
        default=100,
        help='Number of ascending ports to try when the port is in use (default: 100)'
    )
    parser.add_argument(
        '--max-upload-size',
        type=int,
        default=DEFAULT_MAX_UPLOAD_SIZE,
        help='Maximum upload request size in bytes (default: 2GB)'
    )
    parser.add_argument(
        '--marker',
        default=DEFAULT_MARKER_EXTENSION,
        help='Extension marking a zipped folder upload (default: .up)'
    )
    parser.add_argument(
        '--ssl',
        action='store_true',
        help='Serve HTTPS'
    )
    parser.add_argument(
        '--ssl-cert',
        default=None,
        help='PEM certificate file (a self-signed certificate is generated if omitted)'
    )
    parser.add_argument(
        '--ssl-key',
        default=None,
        help='PEM private key file'
    )
    parser.add_argument(
        '--debug', '-d',
        action='store_true',
        help='Enable debug logging'
    )
    parser.add_argument(
        '--version', '-v',
        action='version',
        version='asydrop %s' % __version__
    )

    args = parser.parse_args()

    serve_root = args.dir_option or args.directory or '.'
    if args.port < 1 or args.port > 65535:
        parser.error('Port must be between 1 and 65535, got %s' % args.port)
    if args.port_attempts < 1:
        parser.error('--port-attempts must be at least 1')
    if args.max_upload_size < 1:
        parser.error('--max-upload-size must be positive')
    if args.ssl_key is not None and args.ssl_cert is None:
        parser.error('--ssl-key needs --ssl-cert')

    if args.debug:
        logger.setLevel(logging.DEBUG)

    try:
        asyncio.run(run_file_server(
            serve_root,
            args.host,
            args.port,
            args.debug,
            port_attempts=args.port_attempts,
            max_upload_size=args.max_upload_size,
            marker_extension=args.marker,
            use_ssl=args.ssl or args.ssl_cert is not None,
            ssl_cert=args.ssl_cert,
            ssl_key=args.ssl_key,
        ))
    except KeyboardInterrupt:
        logger.info('Server stopped by user')
    except RepositoryError as e:
        logger.error('Failed to start server: %s' % e.message)
        sys.exit(1)


if __name__ == '__main__':
    main()
