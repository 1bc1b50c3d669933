"""Connection lifecycle: one-shot runs and long-lived listening."""

import logging
import threading
from typing import Callable

from .config import ReceiverConfig
from .errors import ConfigError, MailboxAuthError, log_failure
from .imap_client import ImapClient, get_imap_client
from .listener import IdleListener
from .models import ExitCode, ListenOutcome
from .runner import ActionRunner
from .scanner import MailboxScanner

logger = logging.getLogger(__name__)


def exit_code_for(error: BaseException | None) -> ExitCode:
    """Map the failure that ended a session to a process exit code."""
    if error is None:
        return ExitCode.SUCCESS
    if isinstance(error, ConfigError):
        return ExitCode.CONFIG_ERROR
    if isinstance(error, MailboxAuthError):
        return ExitCode.AUTH_ERROR
    return ExitCode.CONNECTION_ERROR


class SessionController:
    """Owns the mailbox connection for a process run."""

    def __init__(
        self,
        config: ReceiverConfig,
        mailbox_factory: Callable[[ReceiverConfig], ImapClient] = get_imap_client,
        runner: ActionRunner | None = None,
    ):
        self.config = config
        self.mailbox_factory = mailbox_factory
        self.runner = runner or ActionRunner(config.actions)
        self.scanner = MailboxScanner(str(config.trusted_sender), self.runner)
        self.last_error: BaseException | None = None

    def run(self) -> ExitCode:
        """Connect, scan the default folder once and disconnect.

        Every failure is logged here; nothing propagates to the caller.
        """
        self.last_error = None
        mailbox = None
        try:
            mailbox = self.mailbox_factory(self.config)
            mailbox.connect()
            mailbox.authenticate()
            folder = mailbox.default_folder()
            self.scanner.process_pass(mailbox, folder)
        except Exception as e:
            self.last_error = e
            log_failure(logger, "Run failed", e)
        finally:
            if mailbox is not None:
                mailbox.disconnect()
        return exit_code_for(self.last_error)

    def make_listener(self) -> IdleListener:
        listen = self.config.listen
        return IdleListener(
            self.mailbox_factory(self.config),
            self.scanner,
            folder=listen.folder,
            idle_renew_seconds=listen.idle_renew_seconds,
            poll_seconds=listen.poll_seconds,
            scan_on_start=listen.scan_on_start,
        )

    def listen(
        self,
        cancel: threading.Event,
        reconnect: bool | None = None,
        reconnect_delay: float | None = None,
    ) -> ListenOutcome:
        """Listen until cancelled, reconnecting after connection loss.

        Bad credentials or configuration end the loop instead of
        retrying, since another attempt would fail the same way.
        """
        if reconnect is None:
            reconnect = self.config.listen.reconnect
        if reconnect_delay is None:
            reconnect_delay = self.config.listen.reconnect_delay

        while True:
            listener = self.make_listener()
            outcome = listener.listen(cancel)
            self.last_error = listener.last_error

            if outcome == ListenOutcome.CANCELLED or cancel.is_set():
                self.last_error = None
                return ListenOutcome.CANCELLED
            if not reconnect or isinstance(self.last_error, (ConfigError, MailboxAuthError)):
                return outcome

            logger.info("Reconnecting in %ss", reconnect_delay)
            if cancel.wait(reconnect_delay):
                self.last_error = None
                return ListenOutcome.CANCELLED
