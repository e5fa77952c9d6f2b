class ConversionError(Exception):
    """Base class for conversion subsystem errors."""


class QueueFullError(ConversionError):
    def __init__(self, job_id: str) -> None:
        super().__init__("queue full, try again later")
        self.job_id = job_id


class JobWaitTimeoutError(ConversionError):
    """The caller stopped waiting; the job itself keeps running."""

    def __init__(self, job_id: str, reason: str = "conversion timeout") -> None:
        super().__init__(reason)
        self.job_id = job_id


class ConverterError(ConversionError):
    """The external converter could not produce an output file."""


class MissingEngineError(ConverterError):
    pass


class InvalidTransitionError(ConversionError):
    pass


class DuplicateJobError(ConversionError):
    pass
