"""Global constants for QuipPix generation jobs.

Centralizes the timing, sizing and storage-key values shared by the client,
the offline queue and the recovery slot.
"""

from datetime import timedelta

# =============================================================================
# Polling
# =============================================================================

POLL_INTERVAL_SECONDS = 2.0
"""Delay between status requests for a single-image job."""

POLL_TIMEOUT_SECONDS = 180.0
"""Deadline for a single-image job to reach a terminal state (3 minutes)."""

BATCH_POLL_INTERVAL_SECONDS = 2.5
"""Delay between status requests for a batch."""

BATCH_POLL_TIMEOUT_SECONDS = 300.0
"""Deadline for a batch to reach a terminal state (5 minutes)."""

# =============================================================================
# Requests
# =============================================================================

MAX_BATCH_IMAGES = 10
"""Upper bound on images in one batch submission."""

DEFAULT_BASE_URL = "http://localhost:3000"
"""Backend base URL used when nothing is configured."""

REQUEST_TIMEOUT_SECONDS = 60.0
"""Per-request HTTP timeout; uploads can be slow on mobile links."""

TIER_HEADER = "X-QuipPix-Tier"

# =============================================================================
# Recovery and retry
# =============================================================================

RECOVERY_TTL = timedelta(minutes=10)
"""Age after which a pending generation record is discarded on read."""

DEFAULT_MAX_RETRIES = 3
"""User-visible retry budget per generation flow."""

# =============================================================================
# Durable storage keys
# =============================================================================

QUEUE_KEY = "@quippix/offline_queue"
RECOVERY_KEY = "@quippix/pendingGeneration"
