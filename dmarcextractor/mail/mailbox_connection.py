# -*- coding: utf-8 -*-

from __future__ import annotations

from abc import ABC
from typing import List, Union

MessageId = Union[int, str]


class MailboxFailure(RuntimeError):
    """Raised when the mailbox cannot be used, which ends the run"""


class MailboxConnectionError(MailboxFailure):
    """Raised when the mailbox server or store cannot be reached"""


class MailboxAuthError(MailboxFailure):
    """Raised when the mailbox rejects the supplied credentials"""


class MailboxProtocolError(MailboxFailure):
    """Raised when the mailbox answers a request with an error"""


class MailboxConnection(ABC):
    """
    Interface for a mailbox connection
    """

    def fetch_messages(self, reports_folder: str, **kwargs) -> List[MessageId]:
        raise NotImplementedError

    def fetch_message(self, message_id: MessageId) -> bytes:
        raise NotImplementedError

    def keepalive(self):
        raise NotImplementedError
