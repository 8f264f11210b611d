"""Execution layer: connectivity, offline dispatch, retries and the
screen-facing generation service.
"""

from quippix.execution.connectivity import (
    ConnectivitySignal,
    ConnectivityState,
    HealthProbeConnectivity,
    ManualConnectivity,
)
from quippix.execution.dispatcher import DrainResult, OfflineDispatcher
from quippix.execution.generation import GenerationService, SubmissionOutcome
from quippix.execution.retry import RetryController, RetryDecision

__all__ = [
    "ConnectivitySignal",
    "ConnectivityState",
    "DrainResult",
    "GenerationService",
    "HealthProbeConnectivity",
    "ManualConnectivity",
    "OfflineDispatcher",
    "RetryController",
    "RetryDecision",
    "SubmissionOutcome",
]
