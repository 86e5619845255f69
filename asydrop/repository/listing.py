import os
from dataclasses import dataclass, field
from typing import List

from asydrop.errors import InternalIOError


@dataclass
class DirectoryListing:
    directories: List[str] = field(default_factory=list)
    files: List[str] = field(default_factory=list)


def list_directory(serve_root):
    """
    Snapshot the top level of `serve_root`. Nothing is cached, every call reads
    the directory again; entries changing during the call may or may not show up.
    """
    listing = DirectoryListing()
    try:
        with os.scandir(serve_root) as it:
            for entry in it:
                try:
                    is_dir = entry.is_dir()
                except OSError:
                    continue
                if is_dir:
                    listing.directories.append(entry.name)
                else:
                    listing.files.append(entry.name)
    except OSError as e:
        raise InternalIOError('Failed to read directory: %s' % e) from e

    listing.directories.sort()
    listing.files.sort()
    return listing
