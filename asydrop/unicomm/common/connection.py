import asyncio


class UniConnection:
	def __init__(self, reader:asyncio.StreamReader, writer:asyncio.StreamWriter, buffer_size:int = 65535):
		self.reader = reader
		self.writer = writer
		self.buffer_size = buffer_size
		self.closing = False

	def get_extra_info(self, name, default=None):
		if self.writer is not None:
			return self.writer.get_extra_info(name, default)
		return default

	async def close(self):
		if self.closing is True:
			return
		self.closing = True
		if self.writer is not None:
			self.writer.close()
			try:
				await self.writer.wait_closed()
			except (ConnectionError, OSError):
				pass

	async def write(self, data):
		self.writer.write(data)
		await self.writer.drain()

	async def read_one(self):
		"""Returns the next chunk from the peer, b'' on EOF."""
		if self.closing is True:
			return b''
		return await self.reader.read(self.buffer_size)
