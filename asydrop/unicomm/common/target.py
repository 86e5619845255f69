import ssl
import enum
import ipaddress

from asydrop.unicomm.common.unissl import UniSSL

class UniProto(enum.Enum):
	SERVER_TCP = 6
	SERVER_SSL_TCP = 7


class UniTarget:
	"""Where a server listens: address, base port, protocol and how many ports to try."""
	def __init__(self, ip:str, port:int, protocol:UniProto, ssl_ctx:UniSSL = None, hostname:str = None, port_attempts:int = 1):
		self.hostname = hostname
		self.port = port
		self.protocol = protocol
		self.ssl_ctx = ssl_ctx
		self.port_attempts = max(port_attempts, 1)

		try:
			ipaddress.ip_address(ip)
			self.ip = ip
		except ValueError:
			if ip is not None:
				self.hostname = ip
			self.ip = None

		if ip is None and hostname is None:
			raise ValueError('Both IP and Hostname can\'t be none!')

		if self.protocol == UniProto.SERVER_SSL_TCP and self.ssl_ctx is None:
			raise ValueError('SSL server target needs an UniSSL configuration')

	def get_ssl_context(self, protocol = ssl.PROTOCOL_TLS_SERVER):
		if self.ssl_ctx is None:
			return None
		return self.ssl_ctx.get_ssl_context(protocol)

	def get_ip_or_hostname(self):
		if self.ip is not None:
			return self.ip
		return self.hostname

	def get_scheme(self):
		if self.protocol == UniProto.SERVER_SSL_TCP:
			return 'https'
		return 'http'
