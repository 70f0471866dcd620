import logging
import sys

_FORMAT = "%(message)s"


class _StdoutHandler(logging.StreamHandler):
    """Writes to whatever `sys.stdout` is at emit time."""

    @property
    def stream(self):  # type: ignore[override]
        return sys.stdout

    @stream.setter
    def stream(self, value) -> None:
        pass


def configure_logging(level: int | None = None) -> None:
    """Send hyperdrive's logs (access log included) to stdout.

    Without a level, INFO is used unless a level was already set. Idempotent:
    the handler is only added once.
    """
    root = logging.getLogger("hyperdrive")
    if level is not None:
        root.setLevel(level)
    elif root.level == logging.NOTSET:
        root.setLevel(logging.INFO)
    if any(isinstance(h, _StdoutHandler) for h in root.handlers):
        return
    handler = _StdoutHandler()
    handler.setFormatter(logging.Formatter(_FORMAT))
    root.addHandler(handler)
