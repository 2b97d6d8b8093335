# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Merging of a base manifest with overlay fragments.
"""
import logging
from typing import Any, Callable, Dict, Hashable, List, Sequence, TypeVar
from ..errors import SchemaError
from ..MODELS.manifest import Manifest
from ..MODELS.service_definition import Service
from .network_manager import NetworkManager

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Last writer wins. The build spec is replaced as a whole.
SCALAR_FIELDS = ("image", "build", "restart", "command")
# Union, first occurrence keeps its position.
SET_FIELDS = ("networks", "secrets", "depends_on", "env_file")
# Key-wise last writer wins.
MAP_FIELDS = ("environment", "extras", "env_file_dirs")
# Key-wise, and attribute-wise within each entry.
OPTION_FIELDS = ("network_options", "depends_on_options")


def _union(base: List[T], overlay: List[T]) -> List[T]:
    result = list(base)
    for item in overlay:
        if item not in result:
            result.append(item)
    return result


def _keyed_merge(base: List[T], overlay: List[T], key: Callable[[T], Hashable]) -> List[T]:
    merged: Dict[Hashable, T] = {key(item): item for item in base}
    for item in overlay:
        merged[key(item)] = item
    return list(merged.values())


class OverlayMerger:
    """
    Merges Manifest fragments in caller-given order.

    Merge is not commutative: for scalar fields the later fragment wins, so the
    order of fragments passed to :meth:`merge` decides the result.
    """

    def merge(self, fragments: Sequence[Manifest]) -> Manifest:
        """
        Merges fragments into one manifest.

        :param fragments: Base fragment first, then overlays.
        :return: The merged manifest. Inputs are not modified.
        :raises SchemaError: If a merged service has neither image nor build.
        :raises PortConflictError: If two services publish the same host port.
        """
        services: Dict[str, Service] = {}
        networks: Dict[str, Any] = {}
        secrets: Dict[str, Any] = {}
        volumes: Dict[str, Any] = {}

        for fragment in fragments:
            for name, service in fragment.services.items():
                if name in services:
                    logger.debug("Overlaying service %s from %s", name, fragment.source)
                    services[name] = self.merge_service(services[name], service)
                else:
                    services[name] = service
            networks.update(fragment.networks)
            secrets.update(fragment.secrets)
            volumes.update(fragment.volumes)

        for name, service in services.items():
            if not service.has_runnable:
                raise SchemaError(
                    f"service '{name}' must define image or build",
                    source=service.source, service=name, field="image",
                )

        manifest = Manifest(
            services=services,
            networks=networks,
            secrets=secrets,
            volumes=volumes,
            source=fragments[-1].source if fragments else None,
        )
        NetworkManager().claim_all(manifest)
        logger.info("Merged %d fragments into %d services", len(fragments), len(services))
        return manifest

    def merge_service(self, base: Service, overlay: Service) -> Service:
        """
        Applies one overlay service definition on top of a base definition.
        Only fields the overlay explicitly sets are considered.

        :param base: The definition accumulated so far.
        :param overlay: The later definition.
        :return: A new Service.
        """
        explicit = overlay.model_fields_set
        update: Dict[str, Any] = {}

        for field in SCALAR_FIELDS:
            if field in explicit:
                old, new = getattr(base, field), getattr(overlay, field)
                if old is not None and old != new:
                    logger.debug("  %s.%s: %r -> %r", base.name, field, old, new)
                update[field] = new

        for field in SET_FIELDS:
            if field in explicit:
                update[field] = _union(getattr(base, field), getattr(overlay, field))

        for field in MAP_FIELDS:
            if field in explicit:
                update[field] = {**getattr(base, field), **getattr(overlay, field)}

        for field in OPTION_FIELDS:
            if field in explicit:
                merged = dict(getattr(base, field))
                for name, attributes in getattr(overlay, field).items():
                    merged[name] = {**merged.get(name, {}), **attributes}
                update[field] = merged

        if "ports" in explicit:
            update["ports"] = _keyed_merge(base.ports, overlay.ports, key=lambda p: p.merge_key)
        if "volumes" in explicit:
            update["volumes"] = _keyed_merge(base.volumes, overlay.volumes, key=lambda v: v.target)

        return base.model_copy(update=update)
