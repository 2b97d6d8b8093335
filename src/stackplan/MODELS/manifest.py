"""
Models for a manifest fragment or a merged manifest.
"""
from typing import Dict, Optional
from pydantic import BaseModel, ConfigDict
from .service_definition import Service


class Network(BaseModel):
    """
    A named network. Services sharing one can reach each other.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    driver: Optional[str] = None
    external: bool = False


class Secret(BaseModel):
    """
    A file-backed secret. ``base_dir`` is the directory of the declaring
    document, against which a relative ``file`` is resolved.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    file: Optional[str] = None
    external: bool = False
    base_dir: Optional[str] = None


class Volume(BaseModel):
    """
    A named volume, optionally bound to a host path.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    host_path: Optional[str] = None
    external: bool = False


class Manifest(BaseModel):
    """
    Services, networks, secrets and volumes, in declaration order.
    Equivalent to a parsed docker-compose.yml file, or to several merged.
    """
    model_config = ConfigDict(frozen=True)

    services: Dict[str, Service] = {}
    networks: Dict[str, Network] = {}
    secrets: Dict[str, Secret] = {}
    volumes: Dict[str, Volume] = {}
    source: Optional[str] = None
