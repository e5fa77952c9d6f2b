import logging
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level: str = "INFO", log_file: str | None = None) -> None:
    """
    Configure project-wide logging.
    - level: DEBUG/INFO/WARNING/ERROR/CRITICAL
    - log_file: if provided, logs also go to this file
    Console always logs; log file is optional. Both use the same format.
    """
    root = logging.getLogger()
    if getattr(root, "_convertly_configured", False):
        return

    lvl = getattr(logging, (level or "INFO").upper(), logging.INFO)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    ch = logging.StreamHandler(sys.stdout)
    ch.setLevel(lvl)
    ch.setFormatter(formatter)

    root.setLevel(lvl)
    root.handlers[:] = [ch]

    if log_file:
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(lvl)
        fh.setFormatter(formatter)
        root.addHandler(fh)

    # Mark configured to avoid double init under uvicorn reload
    root._convertly_configured = True  # type: ignore[attr-defined]
