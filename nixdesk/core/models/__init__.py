"""
Domain models — Pydantic types (and the Step dataclass) for nixdesk.

All models are re-exported here for convenient access:

    from nixdesk.core.models import EnvironmentProfile, Step, StepReceipt
"""

from nixdesk.core.models.config import ProvisionConfig
from nixdesk.core.models.profile import EnvironmentProfile
from nixdesk.core.models.step import GeneratedArtifact, Step, StepReceipt

__all__ = [
    # config.py
    "ProvisionConfig",
    # profile.py
    "EnvironmentProfile",
    # step.py
    "GeneratedArtifact",
    "Step",
    "StepReceipt",
]
