"""Exceptions and cause-chain flattening for imapcmd."""

import logging
import traceback
from typing import NamedTuple


class ImapCmdError(Exception):
    """Base exception for imapcmd."""


class ConfigError(ImapCmdError):
    """Configuration is invalid or missing."""


class MailboxError(ImapCmdError):
    """The mail server or the connection to it failed."""


class MailboxConnectionError(MailboxError):
    """Could not connect to the mail server."""


class MailboxAuthError(MailboxError):
    """The mail server rejected the credentials."""


class CauseLink(NamedTuple):
    """One layer of an exception chain."""

    message: str
    first_trace_line: str


def _describe(exc: BaseException) -> str:
    text = str(exc)
    name = type(exc).__name__
    return f"{name}: {text}" if text else name


def _raise_site(exc: BaseException) -> str:
    """Location of the frame that raised ``exc``, or "" if it never propagated."""
    frames = traceback.extract_tb(exc.__traceback__)
    if not frames:
        return ""
    frame = frames[-1]
    return f"{frame.filename}:{frame.lineno} in {frame.name}"


def flatten_cause_chain(exc: BaseException) -> list[CauseLink]:
    """Walk an exception and everything it was raised from.

    Explicit causes (``raise ... from``) are preferred; otherwise the
    implicit context is followed unless it was suppressed.
    """
    links: list[CauseLink] = []
    seen: set[int] = set()
    current: BaseException | None = exc

    while current is not None and id(current) not in seen:
        seen.add(id(current))
        links.append(CauseLink(_describe(current), _raise_site(current)))

        if current.__cause__ is not None:
            current = current.__cause__
        elif not current.__suppress_context__:
            current = current.__context__
        else:
            current = None

    return links


def format_cause_chain(links: list[CauseLink]) -> str:
    """Render a flattened chain as a single line."""
    parts = []
    for link in links:
        if link.first_trace_line:
            parts.append(f"{link.message} (at {link.first_trace_line})")
        else:
            parts.append(link.message)
    return " <- ".join(parts)


def log_failure(logger: logging.Logger, summary: str, exc: BaseException) -> list[CauseLink]:
    """Log ``exc`` and its causes as one ERROR record."""
    links = flatten_cause_chain(exc)
    logger.error(
        "%s: %s",
        summary,
        format_cause_chain(links),
        extra={"cause_chain": [link._asdict() for link in links]},
    )
    return links
