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
Orchestration of the load, merge, resolve, validate and emit stages.
"""
import logging
from typing import List
from ..CONVERTERS.plan_emitter import PlanEmitter
from ..MODELS.manifest import Manifest
from ..MODELS.plan import Plan
from ..MODELS.settings import PlanSettings
from ..PARSERS.manifest_loader import ManifestLoader
from ..RUNNERS.graph_validator import NetworkGraphValidator
from .environment_manager import EnvironmentManager
from .overlay_merger import OverlayMerger
from .secret_resolver import SecretResolver

logger = logging.getLogger(__name__)


class PlanOrchestrator:
    """
    Runs the plan pipeline for one set of documents.

    Each stage raises on the first problem it finds, so later stages never see
    an invalid manifest. An orchestrator holds no state between runs.
    """
    def __init__(self, settings: PlanSettings):
        """
        Initializes the orchestrator.

        :param settings: Files, project directory and checks for this run.
        """
        self.settings = settings
        self.project_dir = settings.resolved_project_dir
        self.environment = EnvironmentManager(self.project_dir, settings.environ)
        self.merger = OverlayMerger()
        self.secret_resolver = SecretResolver(self.project_dir)
        self.validator = NetworkGraphValidator()
        self.emitter = PlanEmitter(settings.output_format)

    def load(self) -> List[Manifest]:
        """
        Parses the configured files into fragments.
        """
        context = self.environment.interpolation_context(self.settings.resolved_env_file)
        return ManifestLoader(context).load(self.settings.files)

    def merge(self) -> Manifest:
        """
        Loads and merges the configured files, without further checks.
        """
        return self.merger.merge(self.load())

    def build(self) -> Plan:
        """
        Runs every stage and returns the plan.

        :raises StackPlanError: From the first stage that fails.
        """
        logger.info("Building plan from %s", ", ".join(self.settings.files))
        manifest = self.merge()

        resolved = {}
        if self.settings.check_secrets:
            resolved = self.secret_resolver.resolve(manifest)
        else:
            logger.info("Skipping secret resolution")
        if self.settings.check_env_files:
            self.environment.check_env_files(manifest)

        self.validator.validate(manifest)
        order = self.validator.startup_order(manifest)
        plan = self.emitter.build_plan(manifest, order, resolved)
        logger.info("Plan %s: %d services", plan.digest[:12], len(order))
        return plan
