# -*- coding: utf-8 -*-

from __future__ import annotations

from typing import List

from imapclient.exceptions import IMAPClientError, LoginError
from mailsuite.imap import IMAPClient

from dmarcextractor.log import logger
from dmarcextractor.mail.mailbox_connection import (
    MailboxAuthError,
    MailboxConnection,
    MailboxConnectionError,
    MailboxProtocolError,
)


def _mailbox_failure(error: Exception, action: str):
    """Translates IMAP and socket errors into mailbox failures"""
    if isinstance(error, LoginError):
        return MailboxAuthError("{0}: {1}".format(action, error.__str__()))
    if isinstance(error, IMAPClientError):
        return MailboxProtocolError("{0}: {1}".format(action, error.__str__()))
    return MailboxConnectionError("{0}: {1}".format(action, error.__str__()))


class IMAPConnection(MailboxConnection):
    def __init__(
        self,
        host: str,
        user: str,
        password: str,
        port: int = 993,
        ssl: bool = True,
        verify: bool = True,
        timeout: int = 30,
        max_retries: int = 4,
    ):
        self._host = host
        self._username = user
        logger.info(
            "Connecting to {0} on port {1} with account '{2}'".format(host, port, user)
        )
        try:
            self._client = IMAPClient(
                host,
                user,
                password,
                port=port,
                ssl=ssl,
                verify=verify,
                timeout=timeout,
                max_retries=max_retries,
            )
        except (IMAPClientError, OSError) as e:
            raise _mailbox_failure(
                e, "Unable to log in to {0} as {1}".format(host, user)
            ) from e
        logger.debug("Connected to IMAP server {0}".format(host))

    def fetch_messages(self, reports_folder: str, **kwargs) -> List[int]:
        try:
            self._client.select_folder(reports_folder)
            return list(self._client.search())
        except (IMAPClientError, OSError) as e:
            raise _mailbox_failure(
                e, "Unable to list messages in {0}".format(reports_folder)
            ) from e

    def fetch_message(self, message_id: int) -> bytes:
        try:
            response = self._client.fetch([message_id], ["RFC822"])
        except (IMAPClientError, OSError) as e:
            raise _mailbox_failure(
                e, "Unable to fetch message UID {0}".format(message_id)
            ) from e
        if message_id not in response or b"RFC822" not in response[message_id]:
            raise MailboxProtocolError(
                "The server returned no content for message UID {0}".format(message_id)
            )
        return bytes(response[message_id][b"RFC822"])

    def keepalive(self):
        try:
            self._client.noop()
        except (IMAPClientError, OSError) as e:
            raise _mailbox_failure(e, "IMAP keepalive failed") from e

    def logout(self):
        try:
            self._client.logout()
        except (IMAPClientError, OSError) as e:
            logger.warning("IMAP logout failed. {0}".format(e))
