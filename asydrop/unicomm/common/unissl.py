import os
import ssl

from asydrop.errors import InternalIOError


class UniSSL:
	"""Keeps the certificate paths so a fresh ssl.SSLContext can be built when the server starts."""
	def __init__(self, certfile:str = None, keyfile:str = None):
		self.keyfile:str = keyfile
		self.certfile:str = certfile

	@staticmethod
	def get_selfsigned_server(hostname = 'localhost', cache_dir = None):
		"""Returns a server configuration backed by a generated self-signed certificate."""
		from asydrop.certmanager import CertManager
		certfile, keyfile, err = CertManager(cache_dir).get_selfsigned(hostname)
		if err is not None:
			raise InternalIOError('Failed to generate self-signed certificate: %s' % err) from err
		return UniSSL(certfile, keyfile)

	def get_ssl_context(self, protocol = ssl.PROTOCOL_TLS_SERVER):
		ssl_ctx = ssl.SSLContext(protocol)
		if self.certfile is not None:
			keyfile = self.keyfile
			if keyfile is not None and not os.path.isfile(keyfile):
				raise InternalIOError('Key file not found: %s' % keyfile)
			try:
				ssl_ctx.load_cert_chain(certfile=self.certfile, keyfile=keyfile)
			except (OSError, ssl.SSLError) as e:
				raise InternalIOError('Failed to load certificate %s: %s' % (self.certfile, e)) from e
		return ssl_ctx
