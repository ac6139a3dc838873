import logging

_LINE_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_configured = False

def configure(debug: bool = False) -> None:
    """Install the process-wide log format. Only the CLI calls this."""
    global _configured
    if _configured:
        return
    logging.basicConfig(level=logging.DEBUG if debug else logging.INFO, format=_LINE_FORMAT)
    # transport and packet traces from paramiko are only wanted when debugging
    logging.getLogger("paramiko").setLevel(logging.DEBUG if debug else logging.WARNING)
    _configured = True


def get_logger(name: str | None = None) -> logging.Logger:
    return logging.getLogger(name or "ssh_harness")
