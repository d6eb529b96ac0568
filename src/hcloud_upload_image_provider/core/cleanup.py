"""On-demand reclaim of temporary resources left by interrupted uploads."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from .cancellation import CancelToken, never
from .errors import CleanupError, ProviderError
from .lifecycle import require_credential
from .models import CleanupOutcome
from .uploader import Uploader

log = logging.getLogger("huip.cleanup")

DEFAULT_MESSAGE = "Successfully cleaned up temporary resources"


def cleanup(
    credential: str,
    uploader_factory: Callable[[str], Uploader],
    *,
    cancel: Optional[CancelToken] = None,
) -> CleanupOutcome:
    cancel = cancel or never()
    require_credential(credential)
    uploader = uploader_factory(credential)
    cancel.raise_if_cancelled("cleanup")
    try:
        message = uploader.cleanup_temp_resources(cancel)
    except ProviderError:
        raise
    except Exception as e:
        raise CleanupError("failed to cleanup temporary resources", cause=e) from e
    log.info("cleanup finished")
    return CleanupOutcome(message=message or DEFAULT_MESSAGE)
