"""
Validation of the service dependency graph against network membership.
"""
import logging
from typing import Dict, List
from ..errors import CyclicDependencyError, SchemaError, UnreachableDependencyError
from ..MANAGERS.network_manager import NetworkManager
from ..MODELS.manifest import Manifest
from ..MODELS.service_definition import DEFAULT_NETWORK

logger = logging.getLogger(__name__)

UNVISITED, IN_PROGRESS, DONE = 0, 1, 2


class NetworkGraphValidator:
    """
    Checks that every ``depends_on`` edge can be satisfied: the dependency
    exists, the two services share a network, and the graph has no cycle.

    Services and edges are visited in name order, so the same manifest always
    reports the same failure.
    """
    def validate(self, manifest: Manifest) -> None:
        """
        Runs all checks, stopping at the first failure.

        :raises SchemaError: For references to undefined services, networks or volumes.
        :raises UnreachableDependencyError: For an edge between services that share no network.
        :raises CyclicDependencyError: If the dependency graph has a cycle.
        """
        self.check_references(manifest)
        self.check_reachability(manifest)
        self.check_cycles(manifest)
        logger.info("Dependency graph of %d services is valid", len(manifest.services))

    def dependency_graph(self, manifest: Manifest) -> Dict[str, List[str]]:
        """
        Returns the adjacency list: service -> services it depends on, both sorted.
        """
        return {
            name: sorted(set(manifest.services[name].depends_on))
            for name in sorted(manifest.services)
        }

    def check_references(self, manifest: Manifest) -> None:
        for name in sorted(manifest.services):
            service = manifest.services[name]
            for dep in sorted(service.depends_on):
                if dep not in manifest.services:
                    raise SchemaError(f"service '{name}' depends on undefined service '{dep}'",
                                      source=service.source, service=name, field="depends_on")
            for network in sorted(service.networks):
                if network != DEFAULT_NETWORK and network not in manifest.networks:
                    raise SchemaError(f"service '{name}' refers to undefined network '{network}'",
                                      source=service.source, service=name, field="networks")
            for mount in service.volumes:
                if mount.is_named and mount.source not in manifest.volumes:
                    raise SchemaError(f"service '{name}' refers to undefined volume '{mount.source}'",
                                      source=service.source, service=name, field="volumes")

    def check_reachability(self, manifest: Manifest) -> None:
        memberships = NetworkManager.memberships(manifest)
        for name, deps in self.dependency_graph(manifest).items():
            for dep in deps:
                if not memberships[name] & memberships[dep]:
                    raise UnreachableDependencyError(name, dep, memberships[name], memberships[dep])

    def check_cycles(self, manifest: Manifest) -> None:
        """
        Depth-first traversal with a three-colour visited set. A back edge to an
        in-progress node closes a cycle, reported as the path from that node
        back to itself.
        """
        graph = self.dependency_graph(manifest)
        color = {name: UNVISITED for name in graph}
        path: List[str] = []

        def visit(name):
            color[name] = IN_PROGRESS
            path.append(name)
            for dep in graph.get(name, []):
                if color.get(dep) == IN_PROGRESS:
                    raise CyclicDependencyError(path[path.index(dep):] + [dep])
                if color.get(dep) == UNVISITED:
                    visit(dep)
            path.pop()
            color[name] = DONE

        for name in graph:
            if color[name] == UNVISITED:
                visit(name)

    def startup_order(self, manifest: Manifest) -> List[str]:
        """
        Determines the order to start services in, dependencies first.

        :param manifest: A validated manifest.
        :return: Service names in start order.
        :raises CyclicDependencyError: If the graph has a cycle.
        """
        self.check_cycles(manifest)
        graph = self.dependency_graph(manifest)
        ordered: List[str] = []
        visited = set()

        def visit(name):
            if name in visited:
                return
            visited.add(name)
            for dep in graph.get(name, []):
                visit(dep)
            ordered.append(name)

        for name in graph:
            visit(name)
        return ordered
