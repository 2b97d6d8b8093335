"""
Settings for a single pipeline run.
"""
import os
from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, Field

DEFAULT_COMPOSE_FILE = "docker-compose.yml"


class PlanSettings(BaseModel):
    """
    Inputs to :class:`~stackplan.MANAGERS.plan_orchestrator.PlanOrchestrator`.

    ``files`` are applied in order: the first is the base, the rest are overlays.
    ``project_dir`` defaults to the directory of the first file and is where the
    ``.env`` file and relative ``env_file`` entries are looked up.
    """
    files: List[str] = Field(default_factory=lambda: [DEFAULT_COMPOSE_FILE])
    project_dir: Optional[str] = None
    env_file: Optional[str] = None
    output_format: Literal["yaml", "json"] = "yaml"
    check_secrets: bool = True
    check_env_files: bool = True
    environ: Dict[str, str] = Field(default_factory=lambda: dict(os.environ))

    @property
    def resolved_project_dir(self) -> str:
        if self.project_dir:
            return os.path.abspath(self.project_dir)
        return os.path.dirname(os.path.abspath(self.files[0]))

    @property
    def resolved_env_file(self) -> str:
        if self.env_file:
            return os.path.abspath(self.env_file)
        return os.path.join(self.resolved_project_dir, ".env")
