import logging
import os
from typing import Optional


ROOT_LOGGER = "parsemybill"

_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}


def _coerce_level(value: Optional[str]) -> int:
    if isinstance(value, str):
        return _LEVELS.get(value.upper().strip(), logging.INFO)
    if isinstance(value, int):
        return value
    return logging.INFO


def _configure_root() -> logging.Logger:
    """Attach handlers once to the ``parsemybill`` logger; components propagate to it."""
    root = logging.getLogger(ROOT_LOGGER)
    if getattr(root, "_parsemybill_configured", False):
        return root

    # PARSEMYBILL_LOG_LEVEL overrides LOG_LEVEL
    level = _coerce_level(os.environ.get("PARSEMYBILL_LOG_LEVEL") or os.environ.get("LOG_LEVEL", "INFO"))
    root.setLevel(level)

    fmt = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    formatter = logging.Formatter(fmt=fmt, datefmt=datefmt)

    sh = logging.StreamHandler()
    sh.setFormatter(formatter)
    root.addHandler(sh)

    log_file = os.environ.get("LOG_FILE")
    if log_file:
        try:
            fh = logging.FileHandler(log_file, encoding="utf-8")
            fh.setFormatter(formatter)
            root.addHandler(fh)
        except OSError:
            root.warning("LOG_FILE could not be opened; continuing without file logging")

    root.propagate = False
    setattr(root, "_parsemybill_configured", True)
    return root


def get_logger(name: str) -> logging.Logger:
    """Return the component logger ``parsemybill.<name>``.

    - Output goes to stderr (and LOG_FILE when set) through the shared
      ``parsemybill`` logger, so each line names its component.
    - Level comes from PARSEMYBILL_LOG_LEVEL, then LOG_LEVEL (default INFO).
    """
    _configure_root()
    if name == ROOT_LOGGER or name.startswith(ROOT_LOGGER + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
