"""Catalog of pandoc formats the service accepts, with file extensions and
download content types."""

import os

# Format -> file extension used for temp inputs and outputs
FORMAT_EXTENSIONS: dict[str, str] = {
    "markdown": ".md",
    "html": ".html",
    "pdf": ".pdf",
    "docx": ".docx",
    "odt": ".odt",
    "rst": ".rst",
    "latex": ".tex",
    "plain": ".txt",
    "mediawiki": ".wiki",
    "epub": ".epub",
    "json": ".json",
    "org": ".org",
    "asciidoc": ".adoc",
    "csv": ".csv",
    "rtf": ".rtf",
    "textile": ".textile",
    "docbook": ".xml",
    "jira": ".txt",
    "ipynb": ".ipynb",
    "opml": ".opml",
    "fb2": ".fb2",
    "vimwiki": ".wiki",
    "twiki": ".txt",
    "tikiwiki": ".txt",
    "creole": ".txt",
    "gfm": ".md",
    "pptx": ".pptx",
}

# Upload extension -> source format, used when the client omits "from"
EXTENSION_FORMATS: dict[str, str] = {
    ".md": "markdown",
    ".markdown": "markdown",
    ".html": "html",
    ".htm": "html",
    ".docx": "docx",
    ".odt": "odt",
    ".rst": "rst",
    ".tex": "latex",
    ".txt": "plain",
    ".wiki": "mediawiki",
    ".epub": "epub",
    ".json": "json",
    ".org": "org",
    ".adoc": "asciidoc",
    ".csv": "csv",
    ".rtf": "rtf",
    ".textile": "textile",
    ".ipynb": "ipynb",
    ".opml": "opml",
    ".fb2": "fb2",
    ".pptx": "pptx",
    ".pdf": "pdf",
}

# Ordered high-demand first, matching what pandoc can read
INPUT_FORMATS: tuple[str, ...] = (
    "markdown", "html", "docx", "gfm", "rst",
    "latex", "odt", "plain", "epub", "mediawiki",
    "org", "ipynb", "csv", "json", "rtf",
    "textile", "docbook", "jira", "opml", "fb2",
    "vimwiki", "twiki", "tikiwiki", "creole",
)

# Ordered high-demand first, matching what pandoc can write
OUTPUT_FORMATS: tuple[str, ...] = (
    "markdown", "html", "pdf", "docx", "gfm",
    "pptx", "rst", "latex", "odt", "plain",
    "epub", "mediawiki", "json", "org", "asciidoc",
    "rtf", "textile", "docbook", "jira", "ipynb",
    "opml", "fb2", "vimwiki",
)

CONTENT_TYPES: dict[str, str] = {
    ".html": "text/html; charset=utf-8",
    ".pdf": "application/pdf",
    ".json": "application/json",
    ".ipynb": "application/json",
    ".txt": "text/plain; charset=utf-8",
    ".md": "text/markdown; charset=utf-8",
    ".rst": "text/x-rst; charset=utf-8",
    ".tex": "application/x-tex",
    ".xml": "application/xml",
    ".opml": "text/x-opml",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    ".odt": "application/vnd.oasis.opendocument.text",
    ".epub": "application/epub+zip",
    ".rtf": "application/rtf",
}

# Targets that need a LaTeX engine, probed in this order
PDF_ENGINES: tuple[str, ...] = ("xelatex", "pdflatex", "luatex")


def extension_for(fmt: str) -> str:
    return FORMAT_EXTENSIONS.get(fmt, "")


def detect_format(filename: str, default: str = "markdown") -> str:
    _, ext = os.path.splitext(filename or "")
    return EXTENSION_FORMATS.get(ext.lower(), default)


def content_type_for(path: str) -> str:
    _, ext = os.path.splitext(path)
    return CONTENT_TYPES.get(ext.lower(), "application/octet-stream")


def is_input_format(fmt: str) -> bool:
    return fmt in INPUT_FORMATS


def is_output_format(fmt: str) -> bool:
    return fmt in OUTPUT_FORMATS
