"""QuipPix generation job client.

Submits photo stylization jobs to the rendering backend, polls them to
completion, queues requests made while offline and keeps a crash-recovery
record of the in-flight job.
"""

__version__ = "0.1.0"

from quippix.client import CancellationToken, JobClient
from quippix.core.config import ClientConfig
from quippix.core.errors import ErrorCategory, classify
from quippix.core.models import (
    BatchGenerationRequest,
    GenerationParams,
    GenerationRequest,
    JobStatus,
    PendingGeneration,
)
from quippix.execution import GenerationService

__all__ = [
    "BatchGenerationRequest",
    "CancellationToken",
    "ClientConfig",
    "ErrorCategory",
    "GenerationParams",
    "GenerationRequest",
    "GenerationService",
    "JobClient",
    "JobStatus",
    "PendingGeneration",
    "__version__",
    "classify",
]
