"""
Error taxonomy shared by the generation pipeline.
"""

from __future__ import annotations


class StorybookError(Exception):
    """Base class for every error raised by magicbook."""


class InputError(StorybookError):
    """Malformed or missing inputs; raised before any manifest mutation."""


class NotFoundError(StorybookError):
    """The requested job does not exist in any persistence layer."""


class AccessDeniedError(StorybookError):
    """The principal is neither the job owner nor an administrator."""


class ConflictError(StorybookError):
    """Another step for the same job is already running."""


class DocumentNotReadyError(ConflictError):
    """The final document was requested before the job finished."""


class ProviderUnavailable(StorybookError):
    """
    Transient provider condition (high demand, model access, rate limits).

    The step executor keeps the job in ``generating`` so the next poll retries.
    """


class ProviderTimeout(ProviderUnavailable):
    """An outbound provider call exceeded its timeout."""


class StaleJobError(ProviderUnavailable):
    """A pending asynchronous job outlived the watchdog threshold."""


class PredictionUnavailable(ProviderUnavailable):
    """
    An asynchronous job itself ended in a transient failure (high demand).

    Unlike a failed status check, the job is gone and has to be resubmitted.
    """


class ProviderError(StorybookError):
    """Non-transient provider failure."""


class GenerationError(ProviderError):
    """Provider output could not be parsed into the expected structure."""


class PersistenceError(StorybookError):
    """The durable store could not be reached; fails the request, not the job."""


class DocumentAssemblyError(StorybookError):
    """The printable document could not be produced."""
