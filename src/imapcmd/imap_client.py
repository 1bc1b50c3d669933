"""IMAP transport for the command receiver."""

import email.header
import logging
from typing import Any, Callable

from imapclient import IMAPClient
from imapclient.exceptions import IMAPClientError, LoginError

from .config import ImapConfig, ReceiverConfig, get_config
from .errors import MailboxAuthError, MailboxConnectionError, MailboxError
from .models import ChangeEvent, ConnectionState, MessageSummary

logger = logging.getLogger(__name__)

DELETED = b"\\Deleted"

IDLE_EVENTS = {
    b"EXISTS": ChangeEvent.COUNT_CHANGED,
    b"RECENT": ChangeEvent.COUNT_CHANGED,
    b"FETCH": ChangeEvent.FLAGS_CHANGED,
    b"EXPUNGE": ChangeEvent.MESSAGE_EXPUNGED,
    b"METADATA": ChangeEvent.ANNOTATIONS_CHANGED,
    b"ANNOTATION": ChangeEvent.ANNOTATIONS_CHANGED,
    b"BYE": ChangeEvent.DISCONNECTED,
}


def decode_header_value(value: str | bytes | None) -> str:
    """Decode an email header value."""
    if value is None:
        return ""
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")

    # Decode RFC 2047 encoded words
    decoded_parts = []
    for part, charset in email.header.decode_header(value):
        if isinstance(part, bytes):
            charset = charset or "utf-8"
            try:
                decoded_parts.append(part.decode(charset, errors="replace"))
            except (LookupError, UnicodeDecodeError):
                decoded_parts.append(part.decode("utf-8", errors="replace"))
        else:
            decoded_parts.append(part)

    return " ".join(decoded_parts)


def envelope_address(addresses: tuple | None) -> str:
    """First ``mailbox@host`` from an envelope address list."""
    if not addresses:
        return ""
    first = addresses[0]
    mailbox = first.mailbox.decode() if isinstance(first.mailbox, bytes) else first.mailbox or ""
    host = first.host.decode() if isinstance(first.host, bytes) else first.host or ""
    if mailbox and host:
        return f"{mailbox}@{host}"
    return ""


def parse_idle_responses(responses: list) -> list[ChangeEvent]:
    """Map untagged IDLE responses to change events, in arrival order."""
    events = []
    for response in responses:
        for item in response[:2]:
            if isinstance(item, bytes) and item.upper() in IDLE_EVENTS:
                events.append(IDLE_EVENTS[item.upper()])
                break
    return events


class ImapClient:
    """A single mailbox connection.

    Messages are addressed by sequence number (``use_uid = False``). The
    caller owns the connection and must not share it between threads.
    """

    def __init__(self, config: ImapConfig, password_provider: Callable[[], str]):
        self.config = config
        self._password_provider = password_provider
        self._client: IMAPClient | None = None
        self._idling = False
        self.state = ConnectionState.DISCONNECTED

    def _set_state(self, state: ConnectionState) -> None:
        if state != self.state:
            logger.debug("Connection state %s -> %s", self.state.value, state.value)
            self.state = state

    def connect(self) -> None:
        """Connect to the IMAP server."""
        if self._client is not None:
            return

        self._set_state(ConnectionState.CONNECTING)
        try:
            self._client = IMAPClient(
                self.config.host,
                port=self.config.port,
                ssl=self.config.ssl,
                timeout=self.config.timeout,
            )
        except (IMAPClientError, OSError) as e:
            self._set_state(ConnectionState.DISCONNECTED)
            raise MailboxConnectionError(
                f"Cannot connect to {self.config.host}:{self.config.port}"
            ) from e
        self._client.use_uid = False
        logger.debug("Connected to %s:%d", self.config.host, self.config.port)

    def authenticate(self) -> None:
        """Log in with the configured username and password."""
        try:
            self.client.login(self.config.username, self._password_provider())
        except LoginError as e:
            raise MailboxAuthError(f"Login failed for {self.config.username}") from e
        except (IMAPClientError, OSError) as e:
            raise MailboxConnectionError(f"Connection lost while logging in to {self.config.host}") from e
        self._set_state(ConnectionState.AUTHENTICATED)
        logger.info("Logged in to %s as %s", self.config.host, self.config.username)

    def disconnect(self) -> None:
        """Log out; a failed logout is not an error."""
        if self._client:
            try:
                if self._idling:
                    self._client.idle_done()
                self._client.logout()
            except (IMAPClientError, OSError) as e:
                logger.debug("Logout failed: %s", e)
            self._client = None
            self._idling = False
        self._set_state(ConnectionState.DISCONNECTED)

    def __enter__(self) -> "ImapClient":
        self.connect()
        self.authenticate()
        return self

    def __exit__(self, *args: Any) -> None:
        self.disconnect()

    @property
    def client(self) -> IMAPClient:
        """Get the connected IMAP client."""
        if self._client is None:
            raise MailboxConnectionError("Not connected to IMAP server")
        return self._client

    @property
    def connected(self) -> bool:
        return self._client is not None

    def default_folder(self) -> str:
        """The personal namespace's default folder, INBOX when it has no prefix."""
        try:
            if not self.client.has_capability("NAMESPACE"):
                return "INBOX"
            personal = self.client.namespace().personal
        except (IMAPClientError, OSError) as e:
            raise MailboxError("NAMESPACE failed") from e

        if not personal:
            return "INBOX"
        prefix, separator = personal[0]
        if isinstance(prefix, bytes):
            prefix = prefix.decode("utf-8", errors="replace")
        if isinstance(separator, bytes):
            separator = separator.decode("utf-8", errors="replace")
        if separator:
            prefix = prefix.rstrip(separator)
        return prefix or "INBOX"

    def open_folder(self, folder: str, readonly: bool = False) -> int:
        """Select ``folder`` and return how many messages it holds."""
        try:
            info = self.client.select_folder(folder, readonly=readonly)
        except (IMAPClientError, OSError) as e:
            raise MailboxError(f"Cannot open folder {folder}") from e
        return int(info.get(b"EXISTS", 0))

    def fetch_summaries(self, count: int | None = None) -> list[MessageSummary]:
        """Fetch envelope and flags for every message in the selected folder."""
        if count == 0:
            return []
        try:
            data = self.client.fetch("1:*", ["ENVELOPE", "FLAGS"])
        except (IMAPClientError, OSError) as e:
            raise MailboxError("FETCH failed") from e

        summaries = []
        for index in sorted(data):
            envelope = data[index].get(b"ENVELOPE")
            if envelope is None:
                continue
            sender = envelope_address(envelope.sender) or envelope_address(envelope.from_)
            summaries.append(
                MessageSummary(
                    index=index,
                    sender=sender,
                    subject=decode_header_value(envelope.subject),
                    deleted=DELETED in data[index].get(b"FLAGS", ()),
                )
            )
        return summaries

    def flag_deleted(self, index: int) -> None:
        """Mark a message for removal at the next expunge."""
        try:
            self.client.add_flags([index], [DELETED], silent=True)
        except (IMAPClientError, OSError) as e:
            raise MailboxError(f"Cannot flag message {index}") from e

    def expunge(self) -> None:
        """Remove every message flagged as deleted."""
        try:
            self.client.expunge()
        except (IMAPClientError, OSError) as e:
            raise MailboxError("EXPUNGE failed") from e

    def idle_start(self) -> None:
        """Enter IDLE on the selected folder."""
        try:
            self.client.idle()
        except (IMAPClientError, OSError) as e:
            raise MailboxConnectionError("IDLE failed") from e
        self._idling = True
        self._set_state(ConnectionState.IDLE_WAITING)

    def idle_check(self, timeout: float) -> list[ChangeEvent]:
        """Wait up to ``timeout`` seconds for server notifications."""
        try:
            responses = self.client.idle_check(timeout=timeout)
        except (IMAPClientError, OSError) as e:
            raise MailboxConnectionError("Connection lost while idling") from e
        if responses:
            logger.debug("IDLE responses: %r", responses)
        return parse_idle_responses(responses)

    def idle_done(self) -> None:
        """Leave IDLE so other commands can be issued."""
        if not self._idling:
            return
        self._idling = False
        try:
            self.client.idle_done()
        except (IMAPClientError, OSError) as e:
            raise MailboxConnectionError("Connection lost leaving IDLE") from e
        self._set_state(ConnectionState.AUTHENTICATED)

    def mark_scanning(self) -> None:
        self._set_state(ConnectionState.SCANNING)

    def mark_authenticated(self) -> None:
        """Record that a scan finished and the session is back to plain command mode."""
        if self.connected:
            self._set_state(ConnectionState.AUTHENTICATED)


def get_imap_client(config: ReceiverConfig | None = None) -> ImapClient:
    """Get an IMAP client for the given or loaded configuration."""
    config = config or get_config()
    return ImapClient(config.imap, config.get_password)
