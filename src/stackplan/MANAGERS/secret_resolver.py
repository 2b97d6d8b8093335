"""
Resolution of file-backed secrets referenced by services.
"""
import logging
import os
import stat
from typing import Dict, List
from ..errors import MissingSecretError
from ..MODELS.manifest import Manifest, Secret

logger = logging.getLogger(__name__)


class SecretResolver:
    """
    Checks that every secret a service references is declared and backed by a
    non-empty file. Mounting the secret is left to the container runtime.
    """
    def __init__(self, base_dir: str = "."):
        """
        :param base_dir: Directory for relative secret files whose declaring document is unknown.
        """
        self.base_dir = base_dir

    def resolve_path(self, secret: Secret) -> str:
        """
        Returns the absolute path of a secret's backing file.
        """
        path = os.path.expanduser(secret.file or "")
        if not os.path.isabs(path):
            path = os.path.join(secret.base_dir or self.base_dir, path)
        return os.path.normpath(os.path.abspath(path))

    def resolve(self, manifest: Manifest) -> Dict[str, str]:
        """
        Resolves every referenced secret, in name order.

        :param manifest: The merged manifest.
        :return: Secret name to absolute backing file path. External secrets are omitted.
        :raises MissingSecretError: For the first undeclared, absent or empty secret.
        """
        referenced: Dict[str, List[str]] = {}
        for name, service in manifest.services.items():
            for secret_name in service.secrets:
                referenced.setdefault(secret_name, []).append(name)

        resolved: Dict[str, str] = {}
        for secret_name in sorted(referenced):
            users = referenced[secret_name]
            secret = manifest.secrets.get(secret_name)
            if secret is None:
                raise MissingSecretError(secret_name, None, services=users)
            if secret.external:
                logger.debug("Secret %s is external, skipping", secret_name)
                continue

            path = self.resolve_path(secret)
            if not os.path.isfile(path):
                raise MissingSecretError(secret_name, secret.file, services=users)
            info = os.stat(path)
            if info.st_size == 0:
                raise MissingSecretError(secret_name, secret.file, reason="is empty", services=users)
            if info.st_mode & stat.S_IROTH:
                logger.warning("Secret %s backing file %s is world-readable", secret_name, path)

            logger.debug("Resolved secret %s -> %s", secret_name, path)
            resolved[secret_name] = path
        return resolved
