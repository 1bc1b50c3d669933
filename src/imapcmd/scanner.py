"""One pass over a folder: dispatch commands, flag, expunge."""

import logging

from .errors import log_failure
from .grammar import parse_subject
from .imap_client import ImapClient
from .models import MessageSummary
from .runner import ActionRunner, describe

logger = logging.getLogger(__name__)


class MailboxScanner:
    """Finds command messages from the trusted sender and acts on them."""

    def __init__(self, trusted_sender: str, runner: ActionRunner):
        self.trusted_sender = trusted_sender
        self.runner = runner

    def is_trusted(self, summary: MessageSummary) -> bool:
        return summary.sender.casefold() == self.trusted_sender.casefold()

    def process_pass(self, mailbox: ImapClient, folder: str) -> int:
        """Handle every command message currently in ``folder``.

        Each matching message has all of its commands run and is then
        flagged deleted; the folder is expunged once at the end. Returns
        the number of messages that carried at least one command. Mailbox
        errors end the pass early and are logged, not raised; flags
        already set are left in place.
        """
        processed = 0
        mailbox.mark_scanning()
        try:
            count = mailbox.open_folder(folder, readonly=False)
            # Indices in this list are only valid until expunge below
            summaries = mailbox.fetch_summaries(count)

            for summary in summaries:
                if summary.deleted:
                    # Handled by an earlier pass whose expunge failed
                    logger.debug("Skipping deleted message %d: %s", summary.index, summary.subject)
                    continue
                if not self.is_trusted(summary):
                    logger.debug(
                        "Ignoring message %d from %s: %s",
                        summary.index,
                        summary.sender or "(unknown)",
                        summary.subject,
                    )
                    continue

                commands = parse_subject(summary.subject)
                if not commands:
                    logger.debug("No command in message %d: %s", summary.index, summary.subject)
                    continue

                for command in commands:
                    logger.info("Processing message %d: %s", summary.index, describe(command))
                    self.runner.execute(command)

                mailbox.flag_deleted(summary.index)
                processed += 1

            mailbox.expunge()
        except Exception as e:
            log_failure(logger, f"Scan of {folder} abandoned", e)
            return processed

        if processed > 0:
            logger.info("Processed %d messages", processed)
        else:
            logger.debug("Processed %d messages", processed)
        return processed
