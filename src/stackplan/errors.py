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
Error types raised by the plan pipeline.

Every error is terminal for the current run. Each one carries the names needed
to locate the problem in the source documents, exposed through ``context``.
"""
from typing import Any, Dict, List, Optional


class StackPlanError(Exception):
    """
    Base class for all pipeline errors.
    """
    kind = "StackPlanError"
    exit_code = 1

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}

    def to_dict(self) -> Dict[str, Any]:
        """
        Returns a structured description suitable for JSON output.
        """
        return {"error": self.kind, "message": self.message, **self.context}

    def __str__(self) -> str:
        return self.message


class ParseError(StackPlanError):
    """Malformed document syntax, unreadable source, or an include cycle."""
    kind = "ParseError"
    exit_code = 3

    def __init__(self, message: str, source: Optional[str] = None, line: Optional[int] = None):
        super().__init__(message, source=source, line=line)
        self.source = source
        self.line = line


class SchemaError(StackPlanError):
    """A document parsed but does not describe a valid manifest."""
    kind = "SchemaError"
    exit_code = 4

    def __init__(self, message: str, source: Optional[str] = None,
                 service: Optional[str] = None, field: Optional[str] = None):
        super().__init__(message, source=source, service=service, field=field)
        self.source = source
        self.service = service
        self.field = field


class PortConflictError(StackPlanError):
    """Two distinct services publish the same host port."""
    kind = "PortConflictError"
    exit_code = 5

    def __init__(self, port: int, services: List[str], protocol: str = "tcp"):
        first, second = sorted(services)[:2]
        super().__init__(
            f"host port {port}/{protocol} is published by both '{first}' and '{second}'",
            port=port, protocol=protocol, services=[first, second],
        )
        self.port = port
        self.protocol = protocol
        self.services = [first, second]


class MissingSecretError(StackPlanError):
    """A referenced secret is undeclared or its backing file is absent or empty."""
    kind = "MissingSecretError"
    exit_code = 6

    def __init__(self, secret: str, path: Optional[str], reason: Optional[str] = None,
                 services: Optional[List[str]] = None):
        if path is None:
            message = f"secret '{secret}' is referenced but not declared"
        else:
            message = f"secret '{secret}' backing file {path} {reason or 'does not exist'}"
        super().__init__(message, secret=secret, path=path,
                         services=sorted(services) if services else None)
        self.secret = secret
        self.path = path
        self.services = sorted(services) if services else []


class UnreachableDependencyError(StackPlanError):
    """A service depends on another service it shares no network with."""
    kind = "UnreachableDependencyError"
    exit_code = 7

    def __init__(self, service: str, dependency: str,
                 service_networks: Optional[List[str]] = None,
                 dependency_networks: Optional[List[str]] = None):
        super().__init__(
            f"service '{service}' depends on '{dependency}' but they share no network",
            service=service, dependency=dependency,
            service_networks=sorted(service_networks) if service_networks is not None else None,
            dependency_networks=sorted(dependency_networks) if dependency_networks is not None else None,
        )
        self.service = service
        self.dependency = dependency


class CyclicDependencyError(StackPlanError):
    """The depends_on graph contains a cycle."""
    kind = "CyclicDependencyError"
    exit_code = 8

    def __init__(self, cycle: List[str]):
        super().__init__(f"dependency cycle: {' -> '.join(cycle)}", cycle=list(cycle))
        self.cycle = list(cycle)
