"""
Collision-free names inside a directory.

Existence check and the later create are not atomic. Two uploads racing for
the same name may both get it, the last writer wins.
"""

import os
import hashlib
import datetime

from asydrop import logger


def unique_name(directory, name):
    """
    Return `name`, or `stem_N.ext` with the smallest N >= 1 that is free in `directory`.

    Args:
        directory (str): Directory the name has to be free in
        name (str): Desired file name, including extension

    Returns:
        str: A name that did not exist in `directory` at the time of the check
    """
    stem, ext = os.path.splitext(name)
    candidate = name
    counter = 1
    while os.path.lexists(os.path.join(directory, candidate)):
        logger.debug('Name %r is taken in %s' % (candidate, directory))
        candidate = '%s_%d%s' % (stem, counter, ext)
        counter += 1
    return candidate


def hash_suffix(name, now, attempt = 0):
    """6 lowercase hex characters derived from the name, a timestamp and the attempt number."""
    seed = '%s%s%d' % (name, now.strftime('%Y%m%d%H%M%S'), attempt)
    return hashlib.md5(seed.encode('utf-8')).hexdigest()[:6]


def unique_folder_name(directory, name, now = None):
    """
    Return `name`, or `name_<hex6>` if a folder (or anything else) by that name exists.

    The suffix is recomputed for every attempt, so a taken suffix never
    repeats within one call.

    Args:
        directory (str): Directory the folder will be created in
        name (str): Desired folder name
        now (datetime.datetime): Timestamp fed into the suffix, defaults to now

    Returns:
        str: A folder name that did not exist in `directory` at the time of the check
    """
    if now is None:
        now = datetime.datetime.now()

    candidate = name
    attempt = 0
    while os.path.lexists(os.path.join(directory, candidate)):
        logger.debug('Folder %r exists in %s, generating hash suffix' % (candidate, directory))
        candidate = '%s_%s' % (name, hash_suffix(name, now, attempt))
        attempt += 1
    return candidate
