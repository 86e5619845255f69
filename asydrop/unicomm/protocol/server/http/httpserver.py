
from asydrop.unicomm.common.target import UniTarget
from asydrop.unicomm.common.connection import UniConnection
from asydrop.unicomm.server import UniServer
from asydrop.unicomm import logger
from asydrop._version import __version__
import asyncio
import datetime
import email.utils
import h11


class AsydropHTTPWrapper:
    def __init__(self, client_id, stream:UniConnection, log_callback=None, max_drain=64*1024):
        self.log_callback = log_callback
        self.client_id = client_id
        self.stream = stream
        self.max_drain = max_drain
        self.conn = h11.Connection(h11.SERVER)

    async def debug(self, *args):
        msg = [str(x) for x in args]
        msg = ' '.join(msg)
        logger.debug(msg)
        if self.log_callback is not None:
            await self.log_callback(msg)

    async def send(self, event):
        # ConnectionClosed is never sent, closing goes through shutdown_and_clean_up
        assert type(event) is not h11.ConnectionClosed
        data = self.conn.send(event)
        try:
            await self.stream.write(data)
        except BaseException:
            # the peer is gone or we were cancelled, h11 must not expect more output
            self.conn.send_failed()
            raise

    async def _read_from_peer(self):
        if self.conn.they_are_waiting_for_100_continue:
            await self.debug("Sending 100 Continue")
            go_ahead = h11.InformationalResponse(
                status_code=100, headers=self.basic_headers()
            )
            await self.send(go_ahead)
        try:
            data = await self.stream.read_one()
        except (ConnectionError, OSError) as exc:
            await self.debug('[%s] Error reading from peer: %s' % (self.client_id, exc))
            # They've stopped listening. Not much we can do about it here.
            data = b""
        self.conn.receive_data(data)

    async def next_event(self):
        while True:
            event = self.conn.next_event()
            if event is h11.NEED_DATA:
                await self._read_from_peer()
                continue
            await self.debug('[%s] Event: %s' % (self.client_id, type(event).__name__))
            return event

    async def iter_body(self):
        """Yields the request body chunk by chunk until EndOfMessage."""
        while True:
            event = await self.next_event()
            if type(event) is h11.Data:
                yield bytes(event.data)
            elif type(event) is h11.EndOfMessage:
                return
            else:
                raise h11.RemoteProtocolError('Unexpected event in request body: %s' % type(event).__name__)

    async def discard_body(self):
        """
        Reads and drops what is left of the request body so the connection can
        be reused. Returns False if the body is larger than `max_drain` or the
        peer misbehaves, in which case the connection should be closed.
        """
        drained = 0
        while self.conn.their_state is h11.SEND_BODY:
            try:
                event = await self.next_event()
            except h11.RemoteProtocolError:
                return False
            if type(event) is h11.Data:
                drained += len(event.data)
                if drained > self.max_drain:
                    return False
            elif type(event) is not h11.EndOfMessage:
                return False
        return True

    async def shutdown_and_clean_up(self):
        await self.stream.close()

    def basic_headers(self):
        return HTTPServerHandler.get_basic_headers()


class HTTPServerHandler:
    ident = " ".join(
        ["asydrop/%s" % __version__, h11.PRODUCT_ID]
    ).encode("ascii")

    def __init__(self):
        self._wrapper:AsydropHTTPWrapper = None

    @staticmethod
    def format_date_time(dt=None):
        """Generate a RFC 7231 / RFC 9110 IMF-fixdate string"""
        if dt is None:
            dt = datetime.datetime.now(datetime.timezone.utc)
        return email.utils.format_datetime(dt, usegmt=True)

    @classmethod
    def get_basic_headers(cls):
        # HTTP requires Date and Server in all responses, listings must never be cached
        return [
            ("Date", cls.format_date_time().encode("ascii")),
            ("Server", cls.ident),
            ("Cache-Control", "no-cache, no-store, must-revalidate"),
        ]

    def basic_headers(self):
        return self.get_basic_headers()

    def allowed_methods(self):
        return sorted(name[3:] for name in dir(self) if name.startswith('do_'))

    def can_respond(self):
        """True while no response headers have been sent for the current request."""
        return self._wrapper.conn.our_state in (h11.IDLE, h11.SEND_RESPONSE)

    async def _process_request(self, wrapper:AsydropHTTPWrapper, request:h11.Request):
        self._wrapper = wrapper
        method = request.method.decode("ascii")
        func = getattr(self, f"do_{method}", None)
        if func is None:
            headers = [("Allow", ", ".join(self.allowed_methods()))]
            return await self.send_error(405, "Method Not Allowed", headers)
        await func(request)

    async def start_response(self, status_code:int, headers = None):
        all_headers = self.basic_headers()
        if headers is not None:
            all_headers.extend(headers)
        await self._wrapper.send(h11.Response(status_code=status_code, headers=all_headers))

    async def send_data(self, data:bytes):
        if data:
            await self._wrapper.send(h11.Data(data=data))

    async def end_response(self):
        await self._wrapper.send(h11.EndOfMessage())

    async def send_response(self, status_code:int, body:bytes = b'', content_type:str = 'text/plain; charset=utf-8', headers = None):
        all_headers = [
            ("Content-Type", content_type),
            ("Content-Length", str(len(body))),
        ]
        if headers is not None:
            all_headers.extend(headers)
        await self.start_response(status_code, all_headers)
        await self.send_data(body)
        await self.end_response()

    async def send_error(self, status_code:int, message:str, headers = None):
        await self.send_response(status_code, message.encode('utf-8'), headers = headers)

    async def send_redirect(self, location:str, status_code:int = 303):
        await self.send_response(status_code, headers = [("Location", location)])


class HTTPServer:
    def __init__(self, client_handler, target:UniTarget, log_callback=None):
        self.log_callback = log_callback
        self.target = target
        self.client_handler = client_handler
        self.server = UniServer(self.target)

        self.clients = set()
        self.id_counter = 0
        self.__main_task = None

    @property
    def port(self):
        return self.server.bound_port

    async def debug(self, *args):
        msg = [str(x) for x in args]
        msg = ' '.join(msg)
        logger.debug(msg)
        if self.log_callback is not None:
            await self.log_callback(msg)

    async def __aenter__(self):
        await self.server.bind()
        self.__main_task = asyncio.create_task(self.serve())
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.terminate()

    async def terminate(self):
        if self.__main_task is not None:
            self.__main_task.cancel()
            await asyncio.gather(self.__main_task, return_exceptions=True)
            self.__main_task = None
        self.server.close()
        for client in list(self.clients):
            client.cancel()
        if len(self.clients) > 0:
            await asyncio.gather(*self.clients, return_exceptions=True)
        self.clients = set()

    async def maybe_send_error_response(self, wrapper:AsydropHTTPWrapper, exc:h11.RemoteProtocolError):
        if wrapper.conn.our_state not in {h11.IDLE, h11.SEND_RESPONSE}:
            return
        try:
            handler = HTTPServerHandler()
            handler._wrapper = wrapper
            await handler.send_error(exc.error_status_hint, str(exc), [("Connection", "close")])
        except Exception as send_exc:
            await self.debug('Error while sending error response: %r' % send_exc)

    async def __handle_connection(self, connection:UniConnection):
        client_id = self.id_counter
        self.id_counter += 1
        wrapper = AsydropHTTPWrapper(client_id, connection, self.log_callback)
        handler = self.client_handler()
        await self.debug('Server: New client connected with id %s from %s' % (client_id, connection.get_extra_info('peername')))
        try:
            while True:
                conn = wrapper.conn
                if conn.our_state in (h11.MUST_CLOSE, h11.CLOSED, h11.ERROR):
                    break

                if conn.our_state is h11.DONE:
                    if conn.their_state is h11.SEND_BODY:
                        if await wrapper.discard_body() is False:
                            await self.debug('[%s] Server: request body left unread, closing' % client_id)
                            break
                    if conn.states == {h11.CLIENT: h11.DONE, h11.SERVER: h11.DONE}:
                        conn.start_next_cycle()
                        continue
                    break

                try:
                    event = await wrapper.next_event()
                except h11.RemoteProtocolError as exc:
                    await self.debug('[%s] Server: protocol error %s' % (client_id, exc))
                    await self.maybe_send_error_response(wrapper, exc)
                    break

                if type(event) is h11.Request:
                    try:
                        await handler._process_request(wrapper, event)
                    except (ConnectionError, OSError, h11.RemoteProtocolError) as exc:
                        await self.debug('[%s] Server: connection lost during request: %r' % (client_id, exc))
                        break
                    except Exception:
                        logger.exception('[%s] Server: error during response handler' % client_id)
                        break
                    continue

                if type(event) is h11.ConnectionClosed:
                    break
                await self.debug('[%s] Server: unknown event type %s' % (client_id, type(event)))
                break
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception('[%s] Server: connection handler failed' % client_id)
        finally:
            await wrapper.shutdown_and_clean_up()
            await self.debug('Server: client %s disconnected' % client_id)

    def __client_done(self, task):
        self.clients.discard(task)

    async def serve(self):
        async for connection in self.server.serve():
            task = asyncio.create_task(self.__handle_connection(connection))
            self.clients.add(task)
            task.add_done_callback(self.__client_done)
