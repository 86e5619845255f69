"""
Confinement of client-supplied names to a root directory.

Every name that reaches the filesystem (upload names, download requests,
archive entry names) goes through a SafePathResolver bound to the directory
the operation must stay in. The checks are purely lexical, nothing here
touches the filesystem.
"""

import os
import re
import posixpath

from asydrop.errors import PathEscapeError

_DRIVE_PREFIX = re.compile(r'^[A-Za-z]:')


class SafePathResolver:
    """
    Resolves relative names against a fixed root directory.

    Args:
        root (str): Directory every resolved path must stay inside
    """

    def __init__(self, root):
        self.root = os.path.normpath(os.path.abspath(root))
        self._prefix = self.root.rstrip(os.sep) + os.sep

    @staticmethod
    def basename(name):
        """
        Return the final path segment of `name`, treating both separators alike.

        Args:
            name (str): Client-supplied name, possibly carrying directories

        Returns:
            str: The last non-empty segment, '' if there is none
        """
        if not name:
            return ''
        parts = [p for p in name.replace('\\', '/').split('/') if p]
        if not parts:
            return ''
        return parts[-1]

    def contains(self, path):
        """True if `path` is the root itself or lies below it (segment-wise)."""
        path = os.path.normpath(path)
        return path == self.root or path.startswith(self._prefix)

    def _check_name(self, name):
        if name is None:
            raise PathEscapeError('Missing name')
        if '\x00' in name:
            raise PathEscapeError('Name contains a NUL byte')

    def _join(self, relative, original):
        normalized = posixpath.normpath(relative)
        if normalized == '..' or normalized.startswith('../'):
            raise PathEscapeError('Path escapes root: %r' % original)

        target = os.path.normpath(os.path.join(self.root, *normalized.split('/')))
        if not self.contains(target):
            raise PathEscapeError('Path escapes root: %r' % original)
        return target

    def resolve(self, name):
        """
        Resolve a request-style relative path. Leading separators are dropped,
        so '/a/b' means 'a/b' below the root.

        Raises:
            PathEscapeError: the normalized path leaves the root
        """
        self._check_name(name)
        relative = name.replace('\\', '/').lstrip('/')
        return self._join(relative, name)

    def resolve_entry(self, name):
        """
        Resolve an archive entry name. Unlike resolve(), absolute names are
        rejected instead of being re-rooted, and the entry may not resolve to
        the root directory itself.

        Raises:
            PathEscapeError: absolute name, traversal out of the root, or empty entry
        """
        self._check_name(name)
        relative = name.replace('\\', '/')
        if relative.startswith('/') or _DRIVE_PREFIX.match(relative):
            raise PathEscapeError('Absolute entry path: %r' % name)

        target = self._join(relative, name)
        if target == self.root:
            raise PathEscapeError('Entry resolves to the root directory: %r' % name)
        return target

    def resolve_top_level(self, name):
        """
        Resolve a single top-level name. Any directory part the client sent is
        discarded before joining, only the basename is used.

        Raises:
            PathEscapeError: the basename is empty, '.' or '..'
        """
        self._check_name(name)
        base = SafePathResolver.basename(name)
        if base in ('', '.', '..'):
            raise PathEscapeError('Invalid name: %r' % name)
        return self._join(base, name)
