"""
Models for defining services, including restart policies, port bindings and mounts.
"""
from typing import Any, List, Dict, Optional, Set, Tuple, Union
from pydantic import BaseModel, ConfigDict
from enum import Enum

# Compose attaches services that list no networks to this one.
DEFAULT_NETWORK = "default"


class RestartPolicy(str, Enum):
    """
    Conditions under which the runtime restarts a service.
    """
    NO = "no"
    ALWAYS = "always"
    ON_FAILURE = "on-failure"
    UNLESS_STOPPED = "unless-stopped"


class BuildSpec(BaseModel):
    """
    Build instructions for a service built from local sources.
    """
    model_config = ConfigDict(frozen=True)

    context: str = "."
    dockerfile: Optional[str] = None
    args: Dict[str, Optional[str]] = {}


class PortBinding(BaseModel):
    """
    A single published port. ``host`` is None for an ephemeral host port.
    """
    model_config = ConfigDict(frozen=True)

    container: int
    host: Optional[int] = None
    host_ip: Optional[str] = None
    protocol: str = "tcp"

    @property
    def merge_key(self) -> Tuple:
        """
        Key used when an overlay rebinds ports of the same service.
        """
        if self.host is None:
            return ("container", self.container, self.protocol)
        return ("host", self.host_ip or "", self.host, self.protocol)

    def to_compose(self) -> str:
        """
        Renders the binding in compose short syntax.
        """
        parts = []
        if self.host_ip:
            parts.append(f"[{self.host_ip}]" if ":" in self.host_ip else self.host_ip)
            parts.append("" if self.host is None else str(self.host))
        elif self.host is not None:
            parts.append(str(self.host))
        parts.append(str(self.container))
        text = ":".join(parts)
        if self.protocol != "tcp":
            text = f"{text}/{self.protocol}"
        return text


class VolumeMount(BaseModel):
    """
    Defines a mapping between a named volume or host path and a service path.
    """
    model_config = ConfigDict(frozen=True)

    target: str
    source: Optional[str] = None
    read_only: bool = False

    @property
    def is_named(self) -> bool:
        """
        True when the source refers to a top-level named volume rather than a host path.
        """
        if not self.source:
            return False
        return not self.source.startswith((".", "/", "~", "$")) and "/" not in self.source

    def to_compose(self) -> str:
        text = f"{self.source}:{self.target}" if self.source else self.target
        if self.read_only:
            text += ":ro"
        return text


class Service(BaseModel):
    """
    The definition of a single service as written in one document, or as merged
    across several. Fields an overlay leaves unset are absent from
    ``model_fields_set`` and do not override earlier documents.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    image: Optional[str] = None
    build: Optional[BuildSpec] = None
    restart: Optional[RestartPolicy] = None
    command: Optional[Union[str, List[str]]] = None

    # Networking
    ports: List[PortBinding] = []
    networks: List[str] = []
    # Per-network attributes such as aliases or ipv4_address
    network_options: Dict[str, Dict[str, Any]] = {}

    # Environment
    environment: Dict[str, Optional[str]] = {}
    env_file: List[str] = []
    # Directory each env_file entry resolves against, i.e. its declaring document's
    env_file_dirs: Dict[str, str] = {}
    secrets: List[str] = []

    # Storage
    volumes: List[VolumeMount] = []

    # Lifecycle
    depends_on: List[str] = []
    # Per-dependency attributes such as condition or restart
    depends_on_options: Dict[str, Dict[str, Any]] = {}

    # Keys without a typed field, e.g. healthcheck or labels
    extras: Dict[str, Any] = {}

    # Document the service was first declared in
    source: Optional[str] = None

    @property
    def effective_networks(self) -> Set[str]:
        return set(self.networks) or {DEFAULT_NETWORK}

    @property
    def has_runnable(self) -> bool:
        return bool(self.image) or self.build is not None
