"""
Model for the emitted execution plan.
"""
from typing import Dict, List
from pydantic import BaseModel, ConfigDict


class Plan(BaseModel):
    """
    A validated, canonical manifest document ready for a container runtime.
    """
    model_config = ConfigDict(frozen=True)

    document: str
    format: str = "yaml"
    digest: str
    startup_order: List[str] = []
    resolved_secrets: Dict[str, str] = {}
