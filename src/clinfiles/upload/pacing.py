"""Inter-file pacing for batch uploads.

After each file a worker pauses before taking the next one: a short pause
after success and a longer one after a failure, so a struggling backend is
not hammered by the rest of the batch.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from clinfiles.models import UploadConfig, UploadOutcome

logger = logging.getLogger(__name__)


@dataclass
class PacingConfig:
    """Pause lengths in seconds.

    Attributes:
        success_delay: Pause after a file succeeded.
        failure_delay: Pause after a file failed or was cancelled.
    """

    success_delay: float = 0.5
    failure_delay: float = 1.0

    def __post_init__(self) -> None:
        if self.success_delay < 0 or self.failure_delay < 0:
            raise ValueError("pacing delays must not be negative")

    @classmethod
    def from_upload_config(cls, config: UploadConfig) -> PacingConfig:
        return cls(
            success_delay=config.success_delay_seconds,
            failure_delay=config.failure_delay_seconds,
        )


class UploadPacer:
    """Sleeps between consecutive files according to the last outcome."""

    def __init__(self, config: PacingConfig | None = None) -> None:
        self._config = config or PacingConfig()

    def delay_for(self, outcome: UploadOutcome) -> float:
        if outcome.is_success:
            return self._config.success_delay
        return self._config.failure_delay

    async def wait_after(self, outcome: UploadOutcome) -> None:
        """Sleep for the pause that follows *outcome*."""
        delay = self.delay_for(outcome)
        if delay > 0:
            logger.debug(
                "Pacing: sleeping %.2fs after %s (%s)",
                delay,
                outcome.filename,
                outcome.status.value,
            )
            await asyncio.sleep(delay)
