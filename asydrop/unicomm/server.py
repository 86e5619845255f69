import ssl
import errno
import asyncio

from asydrop.unicomm.common.target import UniTarget, UniProto
from asydrop.unicomm.common.connection import UniConnection
from asydrop.unicomm import logger
from asydrop.errors import InternalIOError

# 10048 is WSAEADDRINUSE
ADDR_IN_USE_ERRNOS = {errno.EADDRINUSE, 10048}
MAX_PORT = 65535


class UniServer:
	def __init__(self, target:UniTarget, buffer_size:int = 65535):
		self.target = target
		self.buffer_size = buffer_size
		self.connection_queue = asyncio.Queue()
		self.bind_evt = asyncio.Event()
		self.bound_port = None
		self.server = None

	async def __handle_connection(self, reader, writer):
		connection = UniConnection(reader, writer, self.buffer_size)
		await self.connection_queue.put(connection)

	async def bind(self):
		"""
		Start listening on the first free port from target.port upwards.
		"Address in use" moves on to the next port, any other error is fatal.
		"""
		if self.target.protocol not in [UniProto.SERVER_TCP, UniProto.SERVER_SSL_TCP]:
			raise InternalIOError('Unknown protocol "%s"' % self.target.protocol)

		ssl_ctx = None
		if self.target.protocol == UniProto.SERVER_SSL_TCP:
			ssl_ctx = self.target.get_ssl_context(ssl.PROTOCOL_TLS_SERVER)

		host = self.target.get_ip_or_hostname()
		port = self.target.port
		for _ in range(self.target.port_attempts):
			if port > MAX_PORT:
				break
			try:
				self.server = await asyncio.start_server(self.__handle_connection, host, port, ssl=ssl_ctx)
			except OSError as e:
				if e.errno in ADDR_IN_USE_ERRNOS:
					logger.info('Port %s is in use, trying next port' % port)
					port += 1
					continue
				raise InternalIOError('Failed to listen on %s:%s: %s' % (host, port, e)) from e

			self.bound_port = self.server.sockets[0].getsockname()[1]
			logger.debug('Listening on %s:%s' % (host, self.bound_port))
			self.bind_evt.set()
			return self.server

		raise InternalIOError('Could not find an available port starting from %s' % self.target.port)

	async def serve(self):
		if self.server is None:
			await self.bind()
		try:
			while self.server.is_serving():
				connection = await self.connection_queue.get()
				yield connection
		finally:
			self.close()

	def close(self):
		if self.server is not None:
			self.server.close()
