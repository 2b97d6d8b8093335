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
Converter from a merged manifest to a canonical plan document.
"""
import hashlib
import json
from typing import Any, Dict, List, Optional
import yaml
from ..MODELS.manifest import Manifest, Network, Secret, Volume
from ..MODELS.plan import Plan
from ..MODELS.service_definition import PortBinding, Service

FORMATS = ("yaml", "json")


def _escape_dollars(data: Any) -> Any:
    """
    Escapes ``$`` as ``$$`` in every string value. Values are already
    interpolated, so a literal dollar must not be expanded again when the plan
    is loaded. Mapping keys are never interpolated and stay as they are.
    """
    if isinstance(data, str):
        return data.replace("$", "$$")
    if isinstance(data, dict):
        return {k: _escape_dollars(v) for k, v in data.items()}
    if isinstance(data, list):
        return [_escape_dollars(v) for v in data]
    return data


def _port_sort_key(binding: PortBinding):
    return (binding.host is None, binding.host or 0, binding.container, binding.protocol, binding.host_ip or "")


class PlanEmitter:
    """
    Renders a manifest as a compose document in canonical form: services,
    networks, secrets and volumes sorted by name, mapping keys sorted, and
    set-valued lists sorted. The same manifest always renders to the same bytes.
    """

    def __init__(self, output_format: str = "yaml"):
        """
        :param output_format: ``yaml`` or ``json``.
        """
        if output_format not in FORMATS:
            raise ValueError(f"unknown plan format '{output_format}'")
        self.output_format = output_format

    def to_document(self, manifest: Manifest) -> Dict[str, Any]:
        """
        Builds the plain data structure of the plan document.
        """
        doc: Dict[str, Any] = {
            "services": {
                name: self._service(manifest.services[name]) for name in sorted(manifest.services)
            }
        }
        if manifest.networks:
            doc["networks"] = {name: self._network(manifest.networks[name]) for name in sorted(manifest.networks)}
        if manifest.secrets:
            doc["secrets"] = {name: self._secret(manifest.secrets[name]) for name in sorted(manifest.secrets)}
        if manifest.volumes:
            doc["volumes"] = {name: self._volume(manifest.volumes[name]) for name in sorted(manifest.volumes)}
        return _escape_dollars(doc)

    def emit(self, manifest: Manifest) -> str:
        """
        Renders the plan document as text.

        :param manifest: A validated, merged manifest.
        :return: The document, ending with a newline.
        """
        doc = self.to_document(manifest)
        if self.output_format == "json":
            return json.dumps(doc, indent=2, sort_keys=True, default=str) + "\n"
        return yaml.safe_dump(doc, sort_keys=True, default_flow_style=False, allow_unicode=True)

    def build_plan(self, manifest: Manifest, startup_order: Optional[List[str]] = None,
                   resolved_secrets: Optional[Dict[str, str]] = None) -> Plan:
        """
        Emits the document and wraps it with its digest and startup order.
        """
        document = self.emit(manifest)
        return Plan(
            document=document,
            format=self.output_format,
            digest=hashlib.sha256(document.encode("utf-8")).hexdigest(),
            startup_order=startup_order or [],
            resolved_secrets=resolved_secrets or {},
        )

    def _service(self, service: Service) -> Dict[str, Any]:
        out: Dict[str, Any] = dict(service.extras)
        if service.image:
            out["image"] = service.image
        if service.build is not None:
            build: Dict[str, Any] = {"context": service.build.context}
            if service.build.dockerfile:
                build["dockerfile"] = service.build.dockerfile
            if service.build.args:
                build["args"] = dict(service.build.args)
            out["build"] = build
        if service.restart is not None:
            out["restart"] = service.restart.value
        if service.command is not None:
            out["command"] = service.command
        if service.ports:
            out["ports"] = [p.to_compose() for p in sorted(service.ports, key=_port_sort_key)]
        if service.environment:
            out["environment"] = dict(service.environment)
        # env_file order decides precedence, so it is kept as written.
        if service.env_file:
            out["env_file"] = list(service.env_file)
        for field in ("depends_on", "networks", "secrets"):
            values = getattr(service, field)
            if values:
                out[field] = sorted(set(values))
        # Attributes force the mapping form; compose requires a condition in it.
        if service.depends_on and service.depends_on_options:
            out["depends_on"] = {
                name: {"condition": "service_started", **service.depends_on_options.get(name, {})}
                for name in out["depends_on"]
            }
        if service.networks and service.network_options:
            out["networks"] = {name: dict(service.network_options.get(name, {})) for name in out["networks"]}
        if service.volumes:
            out["volumes"] = [v.to_compose() for v in sorted(service.volumes, key=lambda v: v.target)]
        return out

    @staticmethod
    def _network(network: Network) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if network.driver:
            out["driver"] = network.driver
        if network.external:
            out["external"] = True
        return out

    @staticmethod
    def _secret(secret: Secret) -> Dict[str, Any]:
        if secret.external:
            return {"external": True}
        return {"file": secret.file}

    @staticmethod
    def _volume(volume: Volume) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if volume.host_path:
            out["driver"] = "local"
            out["driver_opts"] = {"type": "none", "o": "bind", "device": volume.host_path}
        if volume.external:
            out["external"] = True
        return out
