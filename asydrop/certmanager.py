import os
import datetime
import tempfile
import ipaddress

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives import serialization
from cryptography.x509.oid import NameOID

from asydrop import logger


class CertManager:
	"""Keeps self-signed server certificates for HTTPS serving in a cache directory."""
	def __init__(self, cache_dir = None):
		self.cache_dir = cache_dir
		self.setup()

	def setup(self):
		if self.cache_dir is None:
			self.cache_dir = os.path.join(tempfile.gettempdir(), 'asydrop-certstore')
		os.makedirs(self.cache_dir, mode=0o700, exist_ok=True)

	def get_paths(self, hostname):
		safe = ''.join(ch if ch.isalnum() or ch in '.-' else '_' for ch in hostname)
		return os.path.join(self.cache_dir, '%s_cert.pem' % safe), os.path.join(self.cache_dir, '%s_key.pem' % safe)

	def get_selfsigned(self, hostname = 'localhost'):
		"""Return (certfile, keyfile, err) for `hostname`, generating the pair on a cache miss."""
		try:
			certfile, keyfile = self.get_paths(hostname)
			if os.path.isfile(certfile) and os.path.isfile(keyfile):
				logger.debug('Cache hit for %s' % hostname)
				return certfile, keyfile, None

			logger.debug('Cache miss for %s, generating self-signed certificate' % hostname)
			cert, key, err = CertManager.generate_selfsigned(hostname)
			if err is not None:
				raise err

			fd = os.open(keyfile, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
			with os.fdopen(fd, 'wb') as f:
				f.write(key)
			with open(certfile, 'wb') as f:
				f.write(cert)
			return certfile, keyfile, None
		except Exception as e:
			logger.exception('get_selfsigned')
			return None, None, e

	@staticmethod
	def generate_selfsigned(hostname = 'localhost', key_exp = 65537, key_size = 2048, valid_days = 365):
		try:
			one_day = datetime.timedelta(1, 0, 0)
			now = datetime.datetime.now(datetime.timezone.utc)
			private_key = rsa.generate_private_key(
				public_exponent=key_exp,
				key_size=key_size,
			)
			name = x509.Name([
				x509.NameAttribute(NameOID.COMMON_NAME, hostname),
				x509.NameAttribute(NameOID.ORGANIZATION_NAME, 'asydrop'),
			])

			alt_names = [x509.DNSName(hostname)]
			try:
				alt_names.append(x509.IPAddress(ipaddress.ip_address(hostname)))
			except ValueError:
				pass

			builder = x509.CertificateBuilder()
			builder = builder.subject_name(name)
			builder = builder.issuer_name(name)
			builder = builder.not_valid_before(now - one_day)
			builder = builder.not_valid_after(now + datetime.timedelta(valid_days, 0, 0))
			builder = builder.serial_number(x509.random_serial_number())
			builder = builder.public_key(private_key.public_key())
			builder = builder.add_extension(
				x509.SubjectAlternativeName(alt_names), critical=False,
			)
			builder = builder.add_extension(
				x509.BasicConstraints(ca=False, path_length=None), critical=True,
			)
			certificate = builder.sign(private_key=private_key, algorithm=hashes.SHA256())

			cert = certificate.public_bytes(encoding=serialization.Encoding.PEM)
			key = private_key.private_bytes(
				encoding=serialization.Encoding.PEM,
				format=serialization.PrivateFormat.TraditionalOpenSSL,
				encryption_algorithm=serialization.NoEncryption()
			)
			return cert, key, None
		except Exception as e:
			logger.exception('generate_selfsigned')
			return None, None, e
