"""
Domain layer for document conversion.
Provides interfaces (gateways), the job status store, and a service that
owns the job queue and worker pool, abstracting the external converter so
front-ends (HTTP or others) can use the same core logic.
"""

from .errors import (
    ConversionError,
    ConverterError,
    DuplicateJobError,
    InvalidTransitionError,
    JobWaitTimeoutError,
    MissingEngineError,
    QueueFullError,
)
from .interfaces import ConversionJob, ConverterGateway, JobEntry, JobResult, JobStatus, StorageGateway
from .service import ConversionService
from .store import JobStore, RWLock
