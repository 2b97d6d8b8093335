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
Loader for compose-style manifest documents.
"""
import logging
import os
import yaml
from pydantic import ValidationError
from typing import Dict, Any, List, Optional, Sequence, Tuple
from ..errors import ParseError, SchemaError
from ..MODELS.manifest import Manifest, Network, Secret, Volume
from ..MODELS.service_definition import Service, BuildSpec, RestartPolicy, VolumeMount
from ..UTILS.string_interpolation import EnvironmentInterpolator
from .port_parser import parse_port_spec

logger = logging.getLogger(__name__)

# Service keys with a typed field on Service. Anything else is carried in extras.
TYPED_KEYS = {
    "image", "build", "restart", "command", "ports", "networks", "environment",
    "env_file", "secrets", "depends_on", "volumes",
}


class ManifestLoader:
    """
    Parses manifest documents into Manifest fragments.

    The first document given to :meth:`load` is the base and every service in
    it must define ``image`` or ``build``. Later documents are overlays whose
    services may be partial.
    """
    def __init__(self, context: Optional[Dict[str, str]] = None):
        """
        Initializes the loader with an optional environment context for interpolation.

        :param context: A dictionary of variables for interpolation. Defaults to ``os.environ``.
        """
        self.context = dict(os.environ) if context is None else context
        self._warned: set = set()

    def load(self, sources: Sequence[str]) -> List[Manifest]:
        """
        Loads documents from paths, in precedence order.

        :param sources: Paths of the base document followed by overlays.
        :return: Fragments in merge order, includes placed before their includer.
        """
        fragments: List[Manifest] = []
        for index, path in enumerate(sources):
            fragments.extend(self.parse(path, partial=index > 0))
        return fragments

    def parse(self, path: str, partial: bool = False, _stack: Tuple[str, ...] = ()) -> List[Manifest]:
        """
        Parses a document from a path, along with the documents it includes.

        :param path: Path to the document.
        :param partial: Whether services may omit image and build.
        :return: Fragments of included documents followed by this document's fragment.
        """
        abspath = os.path.abspath(path)
        if abspath in _stack:
            chain = " -> ".join(list(_stack[_stack.index(abspath):]) + [abspath])
            raise ParseError(f"include cycle: {chain}", source=path)
        try:
            with open(path, "r") as f:
                content = f.read()
        except OSError as e:
            raise ParseError(f"cannot read {path}: {e.strerror or e}", source=path) from e
        return self.parse_from_string(
            content, source=path, partial=partial,
            base_dir=os.path.dirname(abspath), _stack=_stack + (abspath,),
        )

    def parse_from_string(self, content: str, source: str = "<string>", partial: bool = False,
                          base_dir: Optional[str] = None,
                          _stack: Tuple[str, ...] = ()) -> List[Manifest]:
        """
        Parses a document from a string.

        :param content: YAML content of the document.
        :param source: Label used in error messages.
        :param partial: Whether services may omit image and build.
        :param base_dir: Directory that relative includes and secret files resolve against.
        :return: Fragments of included documents followed by this document's fragment.
        """
        base_dir = base_dir or os.getcwd()
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            mark = getattr(e, "problem_mark", None)
            line = mark.line + 1 if mark is not None else None
            problem = getattr(e, "problem", None) or str(e)
            raise ParseError(f"{source}: invalid YAML: {problem}", source=source, line=line) from e
        except ValueError as e:
            # Constructor failures such as an impossible timestamp
            raise ParseError(f"{source}: invalid value: {e}", source=source) from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ParseError(f"{source}: top-level element must be a mapping", source=source)

        missing: List[str] = []
        try:
            data = EnvironmentInterpolator.interpolate_tree(data, self.context, missing)
        except (KeyError, ValueError) as e:
            raise SchemaError(f"{source}: {e.args[0]}", source=source) from e
        for name in missing:
            if name not in self._warned:
                self._warned.add(name)
                logger.warning("The %s variable is not set. Defaulting to a blank string.", name)

        fragments: List[Manifest] = []
        for include in self._include_paths(data.get("include"), source):
            fragments.extend(self.parse(os.path.join(base_dir, include), partial=partial, _stack=_stack))

        fragment = self.fragment_from_data(data, source, partial=partial, base_dir=base_dir)
        logger.info("Loaded %s: %d services", source, len(fragment.services))
        fragments.append(fragment)
        return fragments

    def fragment_from_data(self, data: Dict[str, Any], source: str, partial: bool = False,
                           base_dir: Optional[str] = None) -> Manifest:
        """
        Builds a Manifest fragment from an already parsed document.

        :raises SchemaError: If the document does not describe a valid manifest.
        """
        try:
            return self._build_fragment(data, source, partial, base_dir)
        except ValidationError as e:
            error = e.errors()[0]
            location = ".".join(str(part) for part in error["loc"])
            raise SchemaError(f"{source}: invalid value for {location or e.title}: {error['msg']}",
                              source=source, field=location or None) from e

    def _build_fragment(self, data: Dict[str, Any], source: str, partial: bool,
                        base_dir: Optional[str]) -> Manifest:
        services = {}
        for name, spec in self._mapping(data.get("services"), source, "services").items():
            if not isinstance(name, str) or not name:
                raise SchemaError(f"{source}: service name must be a non-empty string, got {name!r}",
                                  source=source, field="services")
            services[name] = self._parse_service(name, spec, source, partial, base_dir)

        networks = {}
        for name, spec in self._mapping(data.get("networks"), source, "networks").items():
            spec = self._mapping(spec, source, f"networks.{name}")
            networks[name] = Network(
                name=name,
                driver=spec.get("driver"),
                external=bool(spec.get("external", False)),
            )

        secrets = {}
        for name, spec in self._mapping(data.get("secrets"), source, "secrets").items():
            spec = self._mapping(spec, source, f"secrets.{name}")
            external = bool(spec.get("external", False))
            if not external and not spec.get("file"):
                raise SchemaError(f"{source}: secret '{name}' must define 'file' or 'external'",
                                  source=source, field=f"secrets.{name}")
            secrets[name] = Secret(
                name=name,
                file=None if external else str(spec["file"]),
                external=external,
                base_dir=base_dir,
            )

        volumes = {}
        for name, spec in self._mapping(data.get("volumes"), source, "volumes").items():
            spec = self._mapping(spec, source, f"volumes.{name}")
            driver_opts = spec.get("driver_opts") or {}
            volumes[name] = Volume(
                name=name,
                host_path=driver_opts.get("device") if isinstance(driver_opts, dict) else None,
                external=bool(spec.get("external", False)),
            )

        return Manifest(services=services, networks=networks, secrets=secrets, volumes=volumes, source=source)

    def _parse_service(self, name: str, spec: Any, source: str, partial: bool,
                       base_dir: Optional[str] = None) -> Service:
        """
        Parses a single service definition. Only keys present in the document
        are passed to the model so that overlays leave other fields untouched.

        :param base_dir: Directory of the declaring document; its ``env_file`` entries resolve against it.
        """
        if spec is None:
            spec = {}
        if not isinstance(spec, dict):
            raise SchemaError(f"{source}: service '{name}' must be a mapping",
                              source=source, service=name)

        def fail(field: str, message: str):
            return SchemaError(f"{source}: service '{name}' {message}",
                               source=source, service=name, field=field)

        fields: Dict[str, Any] = {"name": name, "source": source}

        if "image" in spec:
            if not isinstance(spec["image"], str) or not spec["image"]:
                raise fail("image", "image must be a non-empty string")
            fields["image"] = spec["image"]

        if "build" in spec:
            build = spec["build"]
            if isinstance(build, str):
                fields["build"] = BuildSpec(context=build)
            elif isinstance(build, dict):
                args = build.get("args") or {}
                fields["build"] = BuildSpec(
                    context=str(build.get("context", ".")),
                    dockerfile=build.get("dockerfile"),
                    args=self._key_values(args, fail, "build.args"),
                )
            else:
                raise fail("build", "build must be a path or a mapping")

        if "restart" in spec:
            # YAML reads an unquoted `no` as False.
            restart = "no" if spec["restart"] is False else str(spec["restart"]).split(":")[0]
            try:
                fields["restart"] = RestartPolicy(restart)
            except ValueError:
                raise fail("restart", f"has unknown restart policy '{spec['restart']}'")

        if "command" in spec:
            command = spec["command"]
            if isinstance(command, list):
                fields["command"] = [str(part) for part in command]
            elif isinstance(command, str):
                fields["command"] = command
            else:
                raise fail("command", "command must be a string or a list")

        if "ports" in spec:
            ports = []
            for entry in self._list(spec["ports"], fail, "ports"):
                try:
                    ports.extend(parse_port_spec(entry))
                except ValueError as e:
                    raise fail("ports", f"has an invalid port: {e}")
            fields["ports"] = ports

        if "networks" in spec:
            fields["networks"], options = self._names(spec["networks"], fail, "networks")
            if options:
                fields["network_options"] = options

        if "depends_on" in spec:
            fields["depends_on"], options = self._names(spec["depends_on"], fail, "depends_on")
            if options:
                fields["depends_on_options"] = options

        if "environment" in spec:
            fields["environment"] = self._key_values(spec["environment"], fail, "environment")

        if "env_file" in spec:
            env_file = spec["env_file"]
            entries = [env_file] if isinstance(env_file, str) else self._list(env_file, fail, "env_file")
            paths = []
            for entry in entries:
                if isinstance(entry, dict) and "path" in entry:
                    paths.append(str(entry["path"]))
                elif isinstance(entry, str):
                    paths.append(entry)
                else:
                    raise fail("env_file", f"has an invalid env_file entry {entry!r}")
            fields["env_file"] = paths
            if base_dir:
                fields["env_file_dirs"] = {path: base_dir for path in paths}

        if "secrets" in spec:
            secrets = []
            for entry in self._list(spec["secrets"], fail, "secrets"):
                if isinstance(entry, dict) and "source" in entry:
                    secrets.append(str(entry["source"]))
                elif isinstance(entry, str):
                    secrets.append(entry)
                else:
                    raise fail("secrets", f"has an invalid secret reference {entry!r}")
            fields["secrets"] = secrets

        if "volumes" in spec:
            fields["volumes"] = [
                self._parse_volume(entry, fail) for entry in self._list(spec["volumes"], fail, "volumes")
            ]

        extras = {k: v for k, v in spec.items() if k not in TYPED_KEYS}
        if extras:
            fields["extras"] = extras

        service = Service(**fields)
        if not partial and not service.has_runnable:
            raise fail("image", "must define image or build")
        return service

    def _parse_volume(self, entry: Any, fail) -> VolumeMount:
        if isinstance(entry, dict):
            if "target" not in entry:
                raise fail("volumes", "has a volume mapping without 'target'")
            return VolumeMount(
                source=entry.get("source"),
                target=str(entry["target"]),
                read_only=bool(entry.get("read_only", False)),
            )
        if not isinstance(entry, str) or not entry:
            raise fail("volumes", f"has an invalid volume {entry!r}")
        parts = entry.split(":")
        if len(parts) == 1:
            return VolumeMount(target=parts[0])
        if len(parts) == 2:
            return VolumeMount(source=parts[0], target=parts[1])
        if len(parts) == 3:
            return VolumeMount(source=parts[0], target=parts[1], read_only="ro" in parts[2].split(","))
        raise fail("volumes", f"has an invalid volume '{entry}'")

    def _include_paths(self, value: Any, source: str) -> List[str]:
        if value is None:
            return []
        if not isinstance(value, list):
            raise SchemaError(f"{source}: include must be a list", source=source, field="include")
        paths = []
        for entry in value:
            if isinstance(entry, str):
                paths.append(entry)
            elif isinstance(entry, dict) and "path" in entry:
                path = entry["path"]
                paths.extend(path if isinstance(path, list) else [path])
            else:
                raise SchemaError(f"{source}: invalid include entry {entry!r}", source=source, field="include")
        for path in paths:
            if not isinstance(path, str) or not path:
                raise SchemaError(f"{source}: invalid include path {path!r}", source=source, field="include")
        return paths

    def _mapping(self, value: Any, source: str, field: str) -> Dict[Any, Any]:
        """
        Helper for sections that may be empty (``None``) or a mapping.
        """
        if value is None:
            return {}
        if not isinstance(value, dict):
            raise SchemaError(f"{source}: '{field}' must be a mapping", source=source, field=field)
        return value

    def _list(self, value: Any, fail, field: str) -> List[Any]:
        if value is None:
            return []
        if not isinstance(value, list):
            raise fail(field, f"{field} must be a list")
        return value

    def _names(self, value: Any, fail, field: str) -> Tuple[List[str], Dict[str, Dict[str, Any]]]:
        """
        Helper for reference lists, which compose allows as a list or as a mapping keyed by name.

        :return: The names, and the attributes (``condition``, ``aliases``, ...)
            of entries written in mapping form.
        """
        options: Dict[str, Dict[str, Any]] = {}
        if isinstance(value, dict):
            names = list(value.keys())
            for name, attributes in value.items():
                if attributes is None:
                    continue
                if not isinstance(attributes, dict):
                    raise fail(field, f"has invalid attributes for {field} entry {name!r}")
                if attributes:
                    options[name] = attributes
        else:
            names = self._list(value, fail, field)
        for name in names:
            if not isinstance(name, str) or not name:
                raise fail(field, f"has an invalid {field} entry {name!r}")
        return names, options

    def _key_values(self, value: Any, fail, field: str) -> Dict[str, Optional[str]]:
        """
        Helper for ``KEY: value`` mappings that compose also allows as ``KEY=value`` lists.
        """
        result: Dict[str, Optional[str]] = {}
        if isinstance(value, dict):
            for k, v in value.items():
                result[str(k)] = self._scalar_text(v)
        elif isinstance(value, list):
            for entry in value:
                if not isinstance(entry, str):
                    raise fail(field, f"has an invalid {field} entry {entry!r}")
                key, sep, val = entry.partition("=")
                result[key] = val if sep else None
        elif value is not None:
            raise fail(field, f"{field} must be a mapping or a list")
        return result

    @staticmethod
    def _scalar_text(value: Any) -> Optional[str]:
        if value is None:
            return None
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)
