import logging
import sys
from types import TracebackType

import structlog
from structlog.typing import EventDict

from pgrelay._version import __version__
from pgrelay.config import settings

LOGGING_LEVEL_MAP: dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# exception class names that mean "the other side went away", upstream or downstream
TRANSIENT_ERROR_PATTERNS = (
    "ConnectionClosed",
    "ConnectionDoesNotExist",
    "ConnectionFailure",
    "InterfaceError",
    "CannotConnectNow",
    "WebSocketDisconnect",
    "Timeout",
    "ProtocolError",
    "KeepaliveFailed",
    "UpstreamConnectionError",
    "PeerSendError",
)


def add_service_info(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["env"] = settings.ENV
    event_dict["version"] = __version__
    return event_dict


def add_kv_pairs_to_msg(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Append key-value pairs to the 'msg' field so they survive log shippers that only index the message.
    """
    if method_name not in ["info", "warning", "error", "critical", "exception"]:
        return event_dict

    msg_field = event_dict.get("msg", "")
    kv_pairs = {k: v for k, v in event_dict.items() if k not in ["msg", "timestamp", "level"]}
    if kv_pairs:
        msg_field += " | " + ", ".join(f"{k}={v}" for k, v in kv_pairs.items())

    event_dict["msg"] = msg_field
    return event_dict


def add_filename_section(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Add a fixed-width, bracketed filename:lineno section after the log level for console logs.
    """
    filename = event_dict.pop("filename", "")
    lineno = event_dict.pop("lineno", "")
    event_dict["file"] = f"[{filename:<20}:{lineno:<4}]" if filename else "[unknown            ]"
    return event_dict


class CustomConsoleRenderer(structlog.dev.ConsoleRenderer):
    """
    Console renderer that puts the dimmed [file:line] section right after the level.
    """

    def __init__(self) -> None:
        super().__init__(sort_keys=False)

    def __call__(self, logger: logging.Logger, name: str, event_dict: EventDict) -> str:
        file_section = event_dict.pop("file", "")
        file_section_colored = f"\x1b[90m{file_section}\x1b[0m" if file_section else ""
        rendered = super().__call__(logger, name, event_dict)
        first_bracket = rendered.find("]")

        if first_bracket != -1:
            return rendered[: first_bracket + 1] + f" {file_section_colored}" + rendered[first_bracket + 1 :]
        return f"{file_section_colored} {rendered}"


def add_error_processor(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Tag records carrying exc_info with the exception type, a coarse category and a stable hash.
    """
    exc_info = event_dict.get("exc_info")
    if not exc_info:
        return event_dict

    if exc_info is True:
        exc_info = sys.exc_info()
    elif isinstance(exc_info, BaseException):
        exc_info = (type(exc_info), exc_info, exc_info.__traceback__)

    if not isinstance(exc_info, tuple) or len(exc_info) < 2 or exc_info[0] is None:
        return event_dict

    exc_type = exc_info[0]
    exc_traceback: TracebackType | None = exc_info[2] if len(exc_info) >= 3 else None

    event_dict["error_type"] = f"{exc_type.__module__}.{exc_type.__name__}"
    event_dict["error_category"] = categorize_exception(exc_type)
    if exc_traceback is not None:
        event_dict["exception_hash"] = _generate_exception_hash(exc_type, exc_traceback)

    return event_dict


def _generate_exception_hash(exc_type: type, tb: TracebackType) -> str:
    """
    Hash the exception type and the (file, line, function) frames, ignoring the message,
    so the same failure site always yields the same value.
    """
    import hashlib  # noqa: PLC0415
    from pathlib import Path  # noqa: PLC0415

    hasher = hashlib.sha256()
    hasher.update(f"{exc_type.__module__}.{exc_type.__name__}".encode())

    current_tb: TracebackType | None = tb
    while current_tb is not None:
        code = current_tb.tb_frame.f_code
        hasher.update(f"{Path(code.co_filename).name}:{current_tb.tb_lineno}:{code.co_name}".encode())
        current_tb = current_tb.tb_next

    return hasher.hexdigest()[:16]


def categorize_exception(exc_type: type) -> str:
    """
    TRANSIENT: network/IO failures on either link, expected to clear on reconnect or eviction
    BUG: programming errors
    ERROR: everything else
    """
    transient_exceptions = (OSError, ConnectionError, TimeoutError)
    bug_exceptions = (
        AttributeError,
        TypeError,
        KeyError,
        IndexError,
        NameError,
        AssertionError,
        NotImplementedError,
        UnboundLocalError,
    )

    try:
        if issubclass(exc_type, transient_exceptions):
            return "TRANSIENT"
        if issubclass(exc_type, bug_exceptions):
            return "BUG"
    except TypeError:
        pass

    for klass in exc_type.__mro__:
        if any(pattern in klass.__name__ for pattern in TRANSIENT_ERROR_PATTERNS):
            return "TRANSIENT"

    return "ERROR"


def setup_logger() -> None:
    """
    Setup the logger with the specified format
    """
    renderer = structlog.processors.JSONRenderer() if settings.JSON_LOGGING else CustomConsoleRenderer()
    additional_processors = (
        [
            structlog.processors.EventRenamer("msg"),
            add_kv_pairs_to_msg,
            structlog.processors.CallsiteParameterAdder(
                {
                    structlog.processors.CallsiteParameter.MODULE,
                    structlog.processors.CallsiteParameter.FUNC_NAME,
                    structlog.processors.CallsiteParameter.LINENO,
                }
            ),
        ]
        if settings.JSON_LOGGING
        else [
            structlog.processors.CallsiteParameterAdder(
                {
                    structlog.processors.CallsiteParameter.FILENAME,
                    structlog.processors.CallsiteParameter.LINENO,
                }
            ),
            add_filename_section,
        ]
    )
    log_level = LOGGING_LEVEL_MAP.get(settings.LOG_LEVEL.upper(), logging.INFO)

    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            add_service_info,
            add_error_processor,
            structlog.processors.format_exc_info,
        ]
        + additional_processors
        + [renderer],
    )
    logging.basicConfig(level=log_level, format="%(message)s")
    logging.getLogger("uvicorn.error").disabled = True
    logging.getLogger("uvicorn.access").disabled = True
