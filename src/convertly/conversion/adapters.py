import logging
import os
import shutil
import subprocess
import tempfile
from pathlib import Path

from .errors import ConverterError, MissingEngineError
from .formats import PDF_ENGINES
from .interfaces import ConverterGateway, StorageGateway

logger = logging.getLogger(__name__)


class TempStorage(StorageGateway):
    """Scratch files for jobs under a single work directory."""

    def __init__(self, work_dir: str | None = None) -> None:
        self._base = Path(work_dir or tempfile.gettempdir()).resolve()
        self._base.mkdir(parents=True, exist_ok=True)

    @property
    def base(self) -> Path:
        return self._base

    def output_path(self, job_id: str, ext: str) -> str:
        return str(self._base / f"convertly_output_{job_id}{ext}")

    def new_input_path(self, ext: str) -> str:
        fd, path = tempfile.mkstemp(prefix="convertly_upload_", suffix=ext, dir=self._base)
        os.close(fd)
        return path

    def write_input(self, content: str, ext: str) -> str:
        path = self.new_input_path(ext)
        try:
            with open(path, "w", encoding="utf-8") as f:
                f.write(content)
        except Exception:
            self.remove(path)
            raise
        return path

    def remove(self, path: str) -> bool:
        try:
            os.remove(path)
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning("Failed to remove %s: %s", path, e)
            return False


class PandocConverter(ConverterGateway):
    """Runs the pandoc command line tool.

    PDF output needs a LaTeX engine; the first one found on PATH from
    ``engines`` is passed via ``--pdf-engine``.
    """

    def __init__(
        self,
        pandoc_bin: str = "pandoc",
        *,
        timeout: float = 60.0,
        engines: tuple[str, ...] = PDF_ENGINES,
    ) -> None:
        self._pandoc = pandoc_bin
        self._timeout = timeout
        self._engines = engines

    def select_pdf_engine(self) -> str:
        for engine in self._engines:
            if shutil.which(engine):
                return engine
        raise MissingEngineError(
            "PDF conversion requires a LaTeX engine ({}) to be installed. "
            "Please install texlive-latex-recommended and lmodern packages".format(
                ", ".join(self._engines)
            )
        )

    def build_args(self, input_path: str, from_fmt: str, to_fmt: str, output_path: str) -> list[str]:
        args = [
            self._pandoc,
            input_path,
            "-f", from_fmt,
            "-t", to_fmt,
            "--standalone",
            "--wrap=none",
        ]
        if to_fmt == "pdf":
            args.append(f"--pdf-engine={self.select_pdf_engine()}")
        # Output file must be last
        args += ["-o", output_path]
        return args

    def convert(self, input_path: str, from_fmt: str, to_fmt: str, output_path: str) -> None:
        args = self.build_args(input_path, from_fmt, to_fmt, output_path)
        try:
            proc = subprocess.run(
                args,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                timeout=self._timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise ConverterError(f"pandoc timed out after {self._timeout:g}s") from e
        except FileNotFoundError as e:
            raise ConverterError(f"pandoc executable not found: {self._pandoc}") from e
        if proc.returncode != 0:
            stderr = proc.stderr.decode("utf-8", errors="replace").strip()
            raise ConverterError(f"pandoc failed: exit status {proc.returncode}, stderr: {stderr}")
