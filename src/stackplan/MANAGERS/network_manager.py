"""
Network bookkeeping for a manifest: host port claims and network memberships.
"""
from typing import Dict, List, Optional, Set, Tuple
from ..errors import PortConflictError
from ..MODELS.manifest import Manifest
from ..MODELS.service_definition import Service

WILDCARD_IPS = (None, "", "0.0.0.0", "::")


def _ips_overlap(a: Optional[str], b: Optional[str]) -> bool:
    return a in WILDCARD_IPS or b in WILDCARD_IPS or a == b


class NetworkManager:
    """
    Tracks which service publishes which host port, and which networks each
    service is attached to.
    """
    def __init__(self):
        """
        Initializes the network manager.
        """
        # (host_port, protocol) -> [(service_name, host_ip)]
        self.host_port_to_service: Dict[Tuple[int, str], List[Tuple[str, Optional[str]]]] = {}

    def claim_ports(self, service: Service) -> None:
        """
        Records the host ports a service publishes.

        :param service: The merged service definition.
        :raises PortConflictError: If another service already publishes the same host port.
        """
        for binding in service.ports:
            if binding.host is None:
                continue
            key = (binding.host, binding.protocol)
            claims = self.host_port_to_service.setdefault(key, [])
            for other, other_ip in claims:
                if other != service.name and _ips_overlap(other_ip, binding.host_ip):
                    raise PortConflictError(binding.host, [other, service.name], binding.protocol)
            claims.append((service.name, binding.host_ip))

    def claim_all(self, manifest: Manifest) -> None:
        """
        Claims ports for every service, in name order so the reported conflict is stable.
        """
        for name in sorted(manifest.services):
            self.claim_ports(manifest.services[name])

    def get_service_for_port(self, host_port: int, protocol: str = "tcp") -> Optional[str]:
        claims = self.host_port_to_service.get((host_port, protocol))
        return claims[0][0] if claims else None

    @staticmethod
    def memberships(manifest: Manifest) -> Dict[str, Set[str]]:
        """
        Returns the networks each service is attached to, including the implicit default network.
        """
        return {name: svc.effective_networks for name, svc in manifest.services.items()}
