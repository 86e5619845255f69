
class RepositoryError(Exception):
	"""Base class for every error the repository core raises. `status_code` is the HTTP status the server answers with."""
	status_code = 500
	default_message = 'Internal server error'

	def __init__(self, message:str = None):
		self.message = message if message is not None else self.default_message
		super().__init__(self.message)

class PathEscapeError(RepositoryError):
	status_code = 400
	default_message = 'Path escapes its root directory'

class ArchiveSecurityError(RepositoryError):
	status_code = 400
	default_message = 'Archive contains an unsafe entry'

class ArchiveIOError(RepositoryError):
	status_code = 500
	default_message = 'Archive read/write failure'

class NotFoundError(RepositoryError):
	status_code = 404
	default_message = 'Path not found'

class BadRequestError(RepositoryError):
	status_code = 400
	default_message = 'Bad request'

class RangeNotSatisfiableError(RepositoryError):
	status_code = 416
	default_message = 'Requested range not satisfiable'

	def __init__(self, size:int, message:str = None):
		self.size = size
		super().__init__(message)

class PayloadTooLargeError(RepositoryError):
	status_code = 413
	default_message = 'Upload too large'

class InternalIOError(RepositoryError):
	status_code = 500
	default_message = 'Filesystem failure'
