import asyncio
import threading

import pytest

from convertly.conversion.adapters import TempStorage


class FakeConverter:
    """Stands in for pandoc: wraps the input text in a paragraph tag."""

    def __init__(self, *, error: Exception | None = None, gate: threading.Event | None = None) -> None:
        self.error = error
        self.gate = gate
        self.calls: list[tuple[str, str, str, str]] = []
        self.inputs: list[str] = []

    def convert(self, input_path: str, from_fmt: str, to_fmt: str, output_path: str) -> None:
        self.calls.append((input_path, from_fmt, to_fmt, output_path))
        with open(input_path, encoding="utf-8", errors="replace") as f:
            self.inputs.append(f.read())
        if self.gate is not None:
            self.gate.wait(5)
        if self.error is not None:
            raise self.error
        with open(output_path, "w", encoding="utf-8") as f:
            f.write(f"<p>{self.inputs[-1]}</p>")


async def wait_for_status(service, job_id, status, timeout=5.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        entry = service.get(job_id)
        if entry is not None and entry.status == status:
            return entry
        await asyncio.sleep(0.01)
    raise AssertionError(f"job {job_id} never reached {status}")


@pytest.fixture
def storage(tmp_path):
    return TempStorage(str(tmp_path))


@pytest.fixture
def converter():
    return FakeConverter()
