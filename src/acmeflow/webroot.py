"""HTTP-01 challenge publishing under a web root."""
import errno
import logging
import os
from typing import Dict
from typing import Mapping
from typing import Optional
from typing import Set

from acmeflow import challenges
from acmeflow import errors
from acmeflow import interfaces

logger = logging.getLogger(__name__)


class WebrootPublisher(interfaces.ChallengePublisher):
    """Writes key authorizations where a running web server serves them.

    The validation for token ``T`` of domain ``D`` is written to
    ``<webroot of D>/.well-known/acme-challenge/T``.

    :ivar str webroot_path: Web root used for domains missing from
        ``webroot_map``.
    :ivar dict webroot_map: Web root of every domain.

    """

    def __init__(self, webroot_path: Optional[str] = None,
                 webroot_map: Optional[Mapping[str, str]] = None) -> None:
        if webroot_path is None and not webroot_map:
            raise errors.PublishError('A web root is required to publish http-01 challenges')
        self.webroot_path = webroot_path
        self.webroot_map = dict(webroot_map or {})
        self.performed: Dict[str, Set[str]] = {}

    def _webroot(self, domain: str) -> str:
        path = self.webroot_map.get(domain, self.webroot_path)
        if path is None:
            raise errors.PublishError('Missing web root for domain: {0}'.format(domain))
        if not os.path.isdir(path):
            raise errors.PublishError(path + ' does not exist or is not a directory')
        return path

    def _challenge_dir(self, domain: str) -> str:
        return os.path.join(self._webroot(domain), challenges.HTTP01.URI_ROOT_PATH)

    def _prepare(self, root_path: str) -> None:
        logger.debug('Creating root challenges validation dir at %s', root_path)
        # Umask is used instead of chmod so the files end up world
        # readable whatever the caller's umask is.
        old_umask = os.umask(0o022)
        try:
            os.makedirs(root_path, 0o755)
        except OSError as exception:
            if exception.errno != errno.EEXIST:
                raise errors.PublishError(
                    "Couldn't create root for http-01 challenge responses "
                    "at {0}: {1}".format(root_path, exception))
        finally:
            os.umask(old_umask)

    def publish(self, domain: str, token: str, validation: str) -> None:
        root_path = self._challenge_dir(domain)
        self._prepare(root_path)
        validation_path = os.path.join(root_path, token)
        logger.debug('Attempting to save validation to %s', validation_path)

        old_umask = os.umask(0o022)
        try:
            with open(validation_path, 'w') as validation_file:
                validation_file.write(validation)
        except OSError as exception:
            raise errors.PublishError(
                "Couldn't write {0}: {1}".format(validation_path, exception))
        finally:
            os.umask(old_umask)

        self.performed.setdefault(root_path, set()).add(token)

    def unpublish(self, domain: str, token: str) -> None:
        root_path = self._challenge_dir(domain)
        validation_path = os.path.join(root_path, token)
        logger.debug('Removing %s', validation_path)
        try:
            os.remove(validation_path)
        except OSError as exception:
            if exception.errno != errno.ENOENT:
                raise errors.PublishError(
                    "Couldn't remove {0}: {1}".format(validation_path, exception))

        tokens = self.performed.get(root_path, set())
        tokens.discard(token)
        if not tokens:
            self.performed.pop(root_path, None)
            try:
                os.rmdir(root_path)
                logger.debug('All challenges cleaned up, removing %s', root_path)
            except OSError as exc:
                if exc.errno in (errno.ENOTEMPTY, errno.EEXIST):
                    logger.debug('Challenges cleaned up but %s not empty', root_path)
                elif exc.errno != errno.ENOENT:
                    raise errors.PublishError(
                        "Couldn't remove {0}: {1}".format(root_path, exc))
