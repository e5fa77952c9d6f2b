import shutil
import subprocess

import pytest

from convertly.conversion import ConverterError, MissingEngineError
from convertly.conversion.adapters import PandocConverter, TempStorage
from convertly.conversion.formats import content_type_for, detect_format, extension_for


def _which(available):
    return lambda name: f"/usr/bin/{name}" if name in available else None


def test_build_args_for_html():
    args = PandocConverter().build_args("/tmp/in.md", "markdown", "html", "/tmp/out.html")
    assert args == [
        "pandoc", "/tmp/in.md",
        "-f", "markdown",
        "-t", "html",
        "--standalone", "--wrap=none",
        "-o", "/tmp/out.html",
    ]


def test_pdf_engine_follows_preference_order(monkeypatch):
    monkeypatch.setattr("convertly.conversion.adapters.shutil.which", _which({"pdflatex", "luatex"}))
    args = PandocConverter().build_args("/tmp/in.md", "markdown", "pdf", "/tmp/out.pdf")
    assert "--pdf-engine=pdflatex" in args
    assert args[-2:] == ["-o", "/tmp/out.pdf"]

    monkeypatch.setattr("convertly.conversion.adapters.shutil.which", _which({"xelatex", "luatex"}))
    assert PandocConverter().select_pdf_engine() == "xelatex"


def test_missing_pdf_engine(monkeypatch):
    monkeypatch.setattr("convertly.conversion.adapters.shutil.which", _which(set()))
    with pytest.raises(MissingEngineError, match="xelatex, pdflatex, luatex"):
        PandocConverter().select_pdf_engine()


def test_convert_reports_stderr_on_failure(monkeypatch):
    seen = {}

    def fake_run(args, **kwargs):
        seen["args"] = args
        seen["timeout"] = kwargs["timeout"]
        return subprocess.CompletedProcess(args, 64, stdout=None, stderr=b"Unknown input format foo")

    monkeypatch.setattr("convertly.conversion.adapters.subprocess.run", fake_run)
    with pytest.raises(ConverterError) as exc:
        PandocConverter("pandoc", timeout=12).convert("/tmp/in.md", "markdown", "html", "/tmp/out.html")
    assert "exit status 64" in str(exc.value)
    assert "Unknown input format foo" in str(exc.value)
    assert seen["timeout"] == 12
    assert seen["args"][0] == "pandoc"


def test_convert_timeout(monkeypatch):
    def fake_run(args, **kwargs):
        raise subprocess.TimeoutExpired(args, kwargs["timeout"])

    monkeypatch.setattr("convertly.conversion.adapters.subprocess.run", fake_run)
    with pytest.raises(ConverterError, match="timed out after 60s"):
        PandocConverter().convert("/tmp/in.md", "markdown", "html", "/tmp/out.html")


def test_convert_without_pandoc(monkeypatch):
    def fake_run(args, **kwargs):
        raise FileNotFoundError(args[0])

    monkeypatch.setattr("convertly.conversion.adapters.subprocess.run", fake_run)
    with pytest.raises(ConverterError, match="pandoc executable not found"):
        PandocConverter().convert("/tmp/in.md", "markdown", "html", "/tmp/out.html")


@pytest.mark.skipif(shutil.which("pandoc") is None, reason="pandoc not installed")
def test_real_pandoc_markdown_to_html(tmp_path):
    storage = TempStorage(str(tmp_path))
    input_path = storage.write_input("# Hi", ".md")
    output_path = storage.output_path("job-1", ".html")
    PandocConverter().convert(input_path, "markdown", "html", output_path)
    with open(output_path, encoding="utf-8") as f:
        assert "Hi</h1>" in f.read()


def test_temp_storage_paths(tmp_path):
    storage = TempStorage(str(tmp_path))
    assert storage.output_path("abc", ".pdf") == str(tmp_path / "convertly_output_abc.pdf")

    path = storage.write_input("# Hi", ".md")
    assert path.startswith(str(tmp_path))
    assert path.endswith(".md")
    with open(path, encoding="utf-8") as f:
        assert f.read() == "# Hi"

    assert storage.remove(path) is True
    assert storage.remove(path) is False


def test_temp_storage_default_dir():
    import tempfile

    assert str(TempStorage().base) == str(TempStorage(tempfile.gettempdir()).base)


def test_format_helpers():
    assert extension_for("latex") == ".tex"
    assert extension_for("unknown") == ""
    assert detect_format("README.MD") == "markdown"
    assert detect_format("page.htm") == "html"
    assert detect_format("notes.xyz") == "markdown"
    assert detect_format("") == "markdown"
    assert content_type_for("/tmp/convertly_output_1.html").startswith("text/html")
    assert content_type_for("/tmp/a.pdf") == "application/pdf"
    assert content_type_for("/tmp/a.bin") == "application/octet-stream"
