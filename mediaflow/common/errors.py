"""
Error taxonomy shared by adapters, the orchestrator and the dispatcher.

Adapters raise subclasses of these; the dispatcher only looks at the base
class to decide between redelivery and dead-lettering.
"""


class MediaFlowError(Exception):
    """Base class for all application errors."""
    pass


class RetryableError(MediaFlowError):
    """Transient failure; the message should be redelivered."""
    pass


class PermanentError(MediaFlowError):
    """Failure that redelivery cannot fix; the message is dead-lettered."""
    pass


class ConfigurationError(PermanentError):
    """Required configuration is missing or invalid."""
    pass


class SubmissionError(RetryableError):
    """An external job could not be submitted or recorded; safe to retry."""
    pass


class SubmissionRejected(PermanentError):
    """The provider refused the job description; retrying will not help."""
    pass
