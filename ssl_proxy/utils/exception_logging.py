"""
Exception formatting for log lines.

Transport errors from ``httpx`` usually wrap the interesting failure
(certificate verification, DNS lookup, refused connection) in their
``__cause__`` chain, so the formatter walks that chain. None of these
helpers raise.
"""

import logging
from typing import List

# Guards against cycles and runaway chains
MAX_CAUSE_DEPTH = 8


def _safe_str(obj) -> str:
    """
    Safely convert an object to string, handling cases where __str__ or __repr__ might fail.
    """
    try:
        return str(obj)
    except Exception:
        try:
            return repr(obj)
        except Exception:
            return f"<{type(obj).__name__} object (string conversion failed)>"


def _describe_one(exception: BaseException) -> str:
    text = _safe_str(exception)
    name = type(exception).__name__
    return f"{name}: {text}" if text else name


def _cause_chain(exception: BaseException) -> List[BaseException]:
    chain = []
    seen = set()
    current = exception
    while current is not None and id(current) not in seen and len(chain) < MAX_CAUSE_DEPTH:
        seen.add(id(current))
        chain.append(current)
        if current.__cause__ is not None:
            current = current.__cause__
        elif not current.__suppress_context__:
            current = current.__context__
        else:
            current = None
    return chain


def format_exception_message(exception: BaseException) -> str:
    """
    Describe an exception and its causes on one line.

    Returns e.g. ``ConnectError: ... (caused by SSLCertVerificationError: ...)``.
    """
    if exception is None:
        return "None"
    try:
        chain = _cause_chain(exception)
        described = [_describe_one(exc) for exc in chain]
        if len(described) == 1:
            return described[0]
        causes = "; ".join(described[1:])
        return f"{described[0]} (caused by {causes})"
    except Exception:
        return f"<{type(exception).__name__} (formatting failed)>"


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: BaseException,
    level: int = logging.ERROR,
) -> None:
    """
    Log ``prefix`` followed by the formatted exception. Never raises.
    """
    try:
        logger.log(level, f"{prefix}: {format_exception_message(exception)}")
    except Exception:
        try:
            logger.log(logging.ERROR, "Exception logging failed")
        except Exception:
            return
