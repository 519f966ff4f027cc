from dmarcextractor.mail.mailbox_connection import (
    MailboxAuthError,
    MailboxConnection,
    MailboxConnectionError,
    MailboxFailure,
    MailboxProtocolError,
)
from dmarcextractor.mail.imap import IMAPConnection
from dmarcextractor.mail.maildir import MaildirConnection

__all__ = [
    "MailboxConnection",
    "MailboxFailure",
    "MailboxConnectionError",
    "MailboxAuthError",
    "MailboxProtocolError",
    "IMAPConnection",
    "MaildirConnection",
]
