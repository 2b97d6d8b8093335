"""
Managers for handling environment variables and .env file resolution.
"""
import logging
import os
from typing import Dict, List, Mapping, Optional
from dotenv import dotenv_values
from ..errors import SchemaError
from ..MODELS.manifest import Manifest
from ..MODELS.service_definition import Service

logger = logging.getLogger(__name__)


class EnvironmentManager:
    """
    Builds the interpolation context for manifest documents and resolves the
    ``env_file`` sources of services.
    """
    def __init__(self, base_dir: str = ".", environ: Optional[Mapping[str, str]] = None):
        """
        Initializes the environment manager.

        :param base_dir: The project directory. The ``.env`` file, and ``env_file``
            entries with no recorded declaring document, resolve against it.
        :param environ: Process environment. Defaults to ``os.environ``.
        """
        self.base_dir = base_dir
        self.environ = dict(os.environ if environ is None else environ)

    def interpolation_context(self, env_file: Optional[str] = None) -> Dict[str, str]:
        """
        Returns the variables available to ``${VAR}`` placeholders.

        Values from the project ``.env`` file are used unless the process
        environment already defines the variable. A missing ``.env`` file is
        not an error.

        :param env_file: Path to the dotenv file. Defaults to ``<base_dir>/.env``.
        """
        path = env_file or os.path.join(self.base_dir, ".env")
        context: Dict[str, str] = {}
        if os.path.isfile(path):
            values = dotenv_values(path)
            context.update({k: v for k, v in values.items() if v is not None})
            logger.debug("Loaded %d variables from %s", len(context), path)
        else:
            logger.debug("No env file at %s", path)
        context.update(self.environ)
        return context

    def env_file_paths(self, service: Service) -> List[str]:
        """
        Resolves a service's ``env_file`` entries against the directory of the
        document that declared each of them, falling back to the project directory.
        """
        return [
            os.path.join(service.env_file_dirs.get(entry, self.base_dir), entry)
            for entry in service.env_file
        ]

    def check_env_files(self, manifest: Manifest) -> None:
        """
        Verifies that every ``env_file`` referenced by a service exists.

        :raises SchemaError: Naming the first service with a missing file.
        """
        for name in sorted(manifest.services):
            service = manifest.services[name]
            for entry, path in zip(service.env_file, self.env_file_paths(service)):
                if not os.path.isfile(path):
                    raise SchemaError(
                        f"service '{name}' env_file {entry} does not exist",
                        service=name, field="env_file",
                    )

    def read_env_files(self, service: Service) -> Dict[str, Optional[str]]:
        """
        Reads a service's ``env_file`` sources. Later files override earlier ones.

        :raises SchemaError: If one of the files does not exist.
        """
        self.check_env_files(Manifest(services={service.name: service}))
        values: Dict[str, Optional[str]] = {}
        for path in self.env_file_paths(service):
            values.update(dotenv_values(path))
        return values

    def get_merged_environment(self, service: Service) -> Dict[str, Optional[str]]:
        """
        Merges a service's ``env_file`` sources with its explicit ``environment``.
        Explicit values override every file.

        :param service: The (merged) service definition.
        :return: The environment the runtime would give the service.
        """
        merged = self.read_env_files(service)
        merged.update(service.environment)
        return merged
