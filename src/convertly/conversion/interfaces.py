import asyncio
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Protocol


class ConverterGateway(Protocol):
    def convert(self, input_path: str, from_fmt: str, to_fmt: str, output_path: str) -> None:
        """Convert input_path into output_path synchronously.
        This is a blocking call; callers should offload to threads if needed.
        """


class StorageGateway(Protocol):
    def output_path(self, job_id: str, ext: str) -> str:
        ...

    def new_input_path(self, ext: str) -> str:
        ...

    def write_input(self, content: str, ext: str) -> str:
        ...

    def remove(self, path: str) -> bool:
        ...


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class JobEntry:
    status: JobStatus = JobStatus.QUEUED
    output_path: str = ""
    error: str = ""
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, object]:
        data = asdict(self)
        data["status"] = self.status.value
        data["created_at"] = self.created_at.isoformat().replace("+00:00", "Z")
        data["updated_at"] = self.updated_at.isoformat().replace("+00:00", "Z")
        return data


@dataclass(frozen=True)
class JobResult:
    job_id: str
    output_path: str = ""
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class ConversionJob:
    """One conversion request as handed from the coordinator to a worker.

    Exactly one of ``content`` (inline text) or ``input_path`` (an uploaded
    temporary file) is set. ``result`` is resolved at most once by the worker.
    """

    id: str
    from_fmt: str
    to_fmt: str
    result: "asyncio.Future[JobResult]" = field(repr=False, compare=False)
    content: str | None = None
    input_path: str | None = None

    def __post_init__(self) -> None:
        if (self.content is None) == (self.input_path is None):
            raise ValueError("job needs exactly one of content or input_path")

    @property
    def is_file(self) -> bool:
        return self.input_path is not None
