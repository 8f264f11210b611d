"""Remote rendering service client."""

from quippix.client.cancellation import CancellationToken
from quippix.client.jobs import JobClient

__all__ = ["CancellationToken", "JobClient"]
