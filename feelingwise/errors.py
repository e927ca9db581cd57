"""
Error taxonomy.

  InputRejected      — fragment shape invalid; raised synchronously by submit()
  ServiceUnavailable — the external neutralization call failed; recovered
                       locally by the deterministic fallback
  ProcessingFailed   — unexpected failure inside detection, scoring or
                       caching; delivered to the caller as a failure result
"""


class FeelingWiseError(Exception):
    """Base class for all FeelingWise errors."""


class InputRejected(FeelingWiseError, ValueError):
    """Fragment text is outside the accepted shape and never enters the pipeline."""


class ServiceUnavailable(FeelingWiseError):
    """The language-model service could not produce a response."""


class ProcessingFailed(FeelingWiseError):
    """A fragment could not be processed. The handle stays retryable."""

    def __init__(self, message: str, handle=None):
        super().__init__(message)
        self.handle = handle
