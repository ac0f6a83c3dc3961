"""ACME engine utilities."""
import errno
import logging
import os
from typing import Union
from urllib import parse

from acmeflow import errors

logger = logging.getLogger(__name__)


def server_path(server: str) -> str:
    """Filesystem friendly identifier of an ACME server URL.

    ``https://acme-v02.api.letsencrypt.org/directory`` becomes
    ``acme-v02.api.letsencrypt.org/directory``.

    """
    url = parse.urlparse(server)
    return (url.netloc + url.path).rstrip('/').replace(':', '_')


def directory_url(server: str) -> str:
    """URL of the directory resource of ``server``.

    ``server`` may be either the CA base URL or the directory URL itself.

    """
    if parse.urlparse(server).path.rstrip('/').endswith('/directory'):
        return server
    return server.rstrip('/') + '/directory'


def make_or_verify_dir(directory: str, mode: int = 0o755) -> None:
    """Make sure directory exists.

    :param str directory: Path to a directory.
    :param int mode: Mode of the created directories.

    :raises OSError: if invalid or inaccessible file names and
        paths, or other arguments that have the correct type,
        but are not accepted by the operating system.

    """
    try:
        os.makedirs(directory, mode)
    except OSError as exception:
        if exception.errno != errno.EEXIST:
            raise


def safe_write(path: str, content: Union[str, bytes], chmod: int = 0o644) -> None:
    """Replace the content of ``path``.

    The content is written to a temporary file first, so readers never
    see a partially written file.

    :raises .Error: if the file cannot be written.

    """
    data = content.encode() if isinstance(content, str) else content
    tmp_path = path + '.tmp'
    try:
        fd = os.open(tmp_path, os.O_CREAT | os.O_TRUNC | os.O_WRONLY, chmod)
        with os.fdopen(fd, 'wb') as f:
            f.write(data)
        os.chmod(tmp_path, chmod)
        os.replace(tmp_path, path)
    except OSError as error:
        raise errors.Error('Unable to write {0}: {1}'.format(path, error))
    logger.debug('Wrote %s', path)
