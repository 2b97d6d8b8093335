"""
Parsing of compose port specifications into port bindings.
"""
from typing import Any, List, Optional, Tuple
from ..MODELS.service_definition import PortBinding

PROTOCOLS = ("tcp", "udp", "sctp")


def _parse_port(text: str) -> int:
    if not text.isdigit():
        raise ValueError(f"invalid port number '{text}'")
    port = int(text)
    if not 1 <= port <= 65535:
        raise ValueError(f"port {port} out of range")
    return port


def _parse_range(text: str) -> Tuple[int, int]:
    """
    Parses ``8000`` or ``8000-8002`` into an inclusive range.
    """
    start, sep, end = text.partition("-")
    low = _parse_port(start.strip())
    high = _parse_port(end.strip()) if sep else low
    if high < low:
        raise ValueError(f"invalid port range '{text}'")
    return low, high


def parse_port_spec(spec: Any) -> List[PortBinding]:
    """
    Parses one entry of a service's ``ports`` list.

    Accepts the short syntax (``"80"``, ``"8080:80"``, ``"127.0.0.1:5432:5432"``,
    ``"[::1]:53:53/udp"``, ``"8000-8002:8000-8002"``), a bare integer, and the
    long syntax mapping with ``target``/``published``/``host_ip``/``protocol``.

    :param spec: The raw entry.
    :return: One binding, or several for a range.
    :raises ValueError: If the entry is malformed.
    """
    if isinstance(spec, bool):
        raise ValueError(f"invalid port specification {spec!r}")
    if isinstance(spec, int):
        return [PortBinding(container=_parse_port(str(spec)))]
    if isinstance(spec, dict):
        return _parse_long_syntax(spec)
    if not isinstance(spec, str):
        raise ValueError(f"invalid port specification {spec!r}")

    text, _, protocol = spec.strip().partition("/")
    protocol = protocol or "tcp"
    if protocol not in PROTOCOLS:
        raise ValueError(f"unknown protocol '{protocol}' in '{spec}'")

    host_ip: Optional[str] = None
    if text.startswith("["):
        end = text.find("]")
        if end == -1 or text[end + 1:end + 2] != ":":
            raise ValueError(f"invalid port specification '{spec}'")
        host_ip = text[1:end]
        text = text[end + 2:]
        parts = text.split(":")
        if len(parts) != 2:
            raise ValueError(f"invalid port specification '{spec}'")
        host_text, container_text = parts
    else:
        parts = text.split(":")
        if len(parts) == 1:
            host_text, container_text = "", parts[0]
        elif len(parts) == 2:
            host_text, container_text = parts
        elif len(parts) == 3:
            host_ip, host_text, container_text = parts
        else:
            raise ValueError(f"invalid port specification '{spec}'")

    return _expand(host_ip or None, host_text, container_text, protocol, spec)


def _parse_long_syntax(spec: dict) -> List[PortBinding]:
    if "target" not in spec:
        raise ValueError("port mapping is missing 'target'")
    published = spec.get("published")
    protocol = spec.get("protocol") or "tcp"
    if protocol not in PROTOCOLS:
        raise ValueError(f"unknown protocol '{protocol}'")
    host_text = "" if published is None else str(published)
    return _expand(spec.get("host_ip"), host_text, str(spec["target"]), protocol, spec)


def _expand(host_ip: Optional[str], host_text: str, container_text: str,
            protocol: str, spec: Any) -> List[PortBinding]:
    c_low, c_high = _parse_range(container_text)
    if not host_text:
        return [
            PortBinding(container=port, host_ip=host_ip, protocol=protocol)
            for port in range(c_low, c_high + 1)
        ]

    h_low, h_high = _parse_range(host_text)
    if h_high - h_low != c_high - c_low:
        raise ValueError(f"host and container port ranges differ in size in {spec!r}")
    return [
        PortBinding(container=c_low + offset, host=h_low + offset, host_ip=host_ip, protocol=protocol)
        for offset in range(c_high - c_low + 1)
    ]
