import logging

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
LOG_DATEFMT = "%H:%M:%S"


class Diagnostic:
    """解码/校验过程中产生的非致命信息, severity: 'warning' | 'error'"""
    __slots__ = ('severity', 'message')

    def __init__(self, severity, message):
        if severity not in ('warning', 'error'):
            raise ValueError(f"Unknown severity: {severity}")
        object.__setattr__(self, 'severity', severity)
        object.__setattr__(self, 'message', message)

    def __setattr__(self, name, value):
        raise AttributeError("Diagnostic is immutable")

    def __eq__(self, other):
        if not isinstance(other, Diagnostic):
            return NotImplemented
        return (self.severity, self.message) == (other.severity, other.message)

    def __hash__(self):
        return hash((self.severity, self.message))

    def __repr__(self):
        return f"Diagnostic({self.severity!r}, {self.message!r})"

    def __str__(self):
        return f"{self.severity.capitalize()} - {self.message}"


class DiagnosticHandler(logging.Handler):
    """把 WARNING 及以上的日志记录收集为 Diagnostic"""

    def __init__(self, level=logging.WARNING):
        super().__init__(level)
        self.diagnostics = []

    def emit(self, record):
        try:
            severity = 'error' if record.levelno >= logging.ERROR else 'warning'
            self.diagnostics.append(Diagnostic(severity, record.getMessage()))
        except Exception:
            self.handleError(record)


def init_logging(verbose=False, log_path=None):
    fmt = logging.Formatter(LOG_FORMAT, LOG_DATEFMT)
    root_logger = logging.getLogger()

    sh = logging.StreamHandler()
    sh.setFormatter(fmt)
    sh.setLevel(logging.DEBUG if verbose else logging.INFO)
    root_logger.addHandler(sh)

    if log_path:
        fh = logging.FileHandler(log_path, encoding="utf-8")
        fh.setFormatter(fmt)
        fh.setLevel(logging.DEBUG)
        root_logger.addHandler(fh)

    root_logger.setLevel(logging.DEBUG if (verbose or log_path) else logging.INFO)
    return root_logger
