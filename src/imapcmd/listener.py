"""Wait on IMAP IDLE and scan the inbox whenever it changes."""

import logging
import threading
import time
from collections import defaultdict
from typing import Callable

from .errors import MailboxError, log_failure
from .imap_client import ImapClient
from .models import ChangeEvent, ListenOutcome
from .scanner import MailboxScanner

logger = logging.getLogger(__name__)

EventHandler = Callable[[ChangeEvent], None]

SCAN_EVENTS = (
    ChangeEvent.COUNT_CHANGED,
    ChangeEvent.FLAGS_CHANGED,
    ChangeEvent.MESSAGE_EXPUNGED,
    ChangeEvent.ANNOTATIONS_CHANGED,
)


class IdleListener:
    """Holds one connection open and reacts to server notifications.

    Scans run on the listening thread between IDLE sessions, so passes
    never overlap. Handlers only record that a scan is wanted; however
    many events arrive in one wake-up, at most one pass follows.
    """

    def __init__(
        self,
        mailbox: ImapClient,
        scanner: MailboxScanner,
        folder: str = "INBOX",
        idle_renew_seconds: float = 1500,
        poll_seconds: float = 1.0,
        scan_on_start: bool = True,
    ):
        self.mailbox = mailbox
        self.scanner = scanner
        self.folder = folder
        self.idle_renew_seconds = idle_renew_seconds
        self.poll_seconds = poll_seconds
        self.scan_on_start = scan_on_start
        self.last_error: BaseException | None = None

        self._handlers: dict[ChangeEvent, list[EventHandler]] = defaultdict(list)
        self._scan_requested = False
        for event in SCAN_EVENTS:
            self.subscribe(event, self._request_scan)

    def subscribe(self, event: ChangeEvent, handler: EventHandler) -> None:
        """Call ``handler`` whenever ``event`` is delivered."""
        self._handlers[event].append(handler)

    def _request_scan(self, event: ChangeEvent) -> None:
        logger.debug("Scan requested by %s", event.value)
        self._scan_requested = True

    def _dispatch(self, events: list[ChangeEvent]) -> None:
        for event in dict.fromkeys(events):
            for handler in self._handlers.get(event, []):
                try:
                    handler(event)
                except Exception as e:
                    log_failure(logger, f"Handler for {event.value} failed", e)

    def _scan(self) -> None:
        self._scan_requested = False
        try:
            self.scanner.process_pass(self.mailbox, self.folder)
        except Exception as e:
            log_failure(logger, f"Scan of {self.folder} failed", e)
        # The pass selected the folder read-write; go back to watching
        self.mailbox.open_folder(self.folder, readonly=True)
        self.mailbox.mark_authenticated()

    def listen(self, cancel: threading.Event) -> ListenOutcome:
        """Run until ``cancel`` is set or the server goes away."""
        self.last_error = None
        try:
            self.mailbox.connect()
            self.mailbox.authenticate()
            self.mailbox.open_folder(self.folder, readonly=True)
        except Exception as e:
            self.last_error = e
            log_failure(logger, "Cannot start listening", e)
            self.mailbox.disconnect()
            return ListenOutcome.FAILED

        logger.info("Listening for commands in %s", self.folder)
        try:
            if self.scan_on_start:
                self._scan()
            return self._wait(cancel)
        except MailboxError as e:
            self.last_error = e
            log_failure(logger, "Connection lost while listening", e)
            return ListenOutcome.DISCONNECTED
        finally:
            self.mailbox.disconnect()

    def _wait(self, cancel: threading.Event) -> ListenOutcome:
        while not cancel.is_set():
            self.mailbox.idle_start()
            started = time.monotonic()

            while not cancel.is_set():
                events = self.mailbox.idle_check(timeout=self.poll_seconds)
                self._dispatch(events)
                if ChangeEvent.DISCONNECTED in events:
                    logger.warning("Server closed the connection")
                    return ListenOutcome.DISCONNECTED
                if self._scan_requested:
                    break
                if time.monotonic() - started >= self.idle_renew_seconds:
                    logger.debug("Renewing IDLE")
                    break

            self.mailbox.idle_done()
            if self._scan_requested and not cancel.is_set():
                self._scan()

        logger.info("Listener cancelled")
        return ListenOutcome.CANCELLED
