# -*- coding: utf-8 -*-

from __future__ import annotations

import mailbox
from typing import List, Optional

from dmarcextractor.log import logger
from dmarcextractor.mail.mailbox_connection import (
    MailboxConnection,
    MailboxConnectionError,
    MailboxProtocolError,
)


class MaildirConnection(MailboxConnection):
    def __init__(
        self,
        maildir_path: str,
        maildir_create: bool = False,
    ):
        self._maildir_path = maildir_path
        self._maildir_create = maildir_create
        try:
            self._client = mailbox.Maildir(
                maildir_path, factory=None, create=maildir_create
            )
        except (mailbox.NoSuchMailboxError, OSError) as e:
            raise MailboxConnectionError(
                "Unable to open Maildir {0}: {1}".format(maildir_path, e)
            ) from e
        self._folder: Optional[mailbox.Maildir] = None

    def fetch_messages(self, reports_folder: str, **kwargs) -> List[str]:
        if reports_folder.upper() == "INBOX":
            self._folder = self._client
        else:
            try:
                self._folder = self._client.get_folder(reports_folder)
            except mailbox.NoSuchMailboxError as e:
                raise MailboxProtocolError(
                    "Maildir folder {0} does not exist".format(reports_folder)
                ) from e
        keys = sorted(self._folder.keys())
        logger.debug(
            "Found {0} messages in Maildir {1}".format(len(keys), self._maildir_path)
        )
        return keys

    def fetch_message(self, message_id: str) -> bytes:
        folder = self._folder if self._folder is not None else self._client
        try:
            return folder.get_bytes(message_id)
        except KeyError as e:
            raise MailboxProtocolError(
                "Message {0} does not exist in Maildir".format(message_id)
            ) from e
        except OSError as e:
            raise MailboxConnectionError(
                "Unable to read message {0}: {1}".format(message_id, e)
            ) from e

    def keepalive(self):
        return
