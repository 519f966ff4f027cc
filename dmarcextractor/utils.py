"""Utility functions that might be useful for other projects"""

import logging
from datetime import datetime, timezone

from mailparser.utils import decode_header_part

mailparser_logger = logging.getLogger("mailparser")
mailparser_logger.setLevel(logging.CRITICAL)


def timestamp_to_datetime(timestamp):
    """
    Converts a UNIX/DMARC timestamp to a timezone-aware UTC ``datetime``

    Args:
        timestamp (int): The timestamp

    Returns:
        datetime: The converted timestamp as a Python ``datetime`` object
    """
    return datetime.fromtimestamp(int(timestamp), tz=timezone.utc)


def timestamp_to_human(timestamp):
    """
    Converts a UNIX/DMARC timestamp to a human-readable UTC string

    Args:
        timestamp: The timestamp

    Returns:
        str: The converted timestamp in ``YYYY-MM-DD HH:MM:SS`` format
    """
    return timestamp_to_datetime(timestamp).strftime("%Y-%m-%d %H:%M:%S")


def get_filename_safe_string(string):
    """
    Converts a string to a string that is safe for a filename

    Args:
        string (str): A string to make safe for a filename

    Returns:
        str: A string safe for a filename
    """
    invalid_filename_chars = [
        "\\",
        "/",
        ":",
        '"',
        "*",
        "?",
        "|",
        "<",
        ">",
        "\n",
        "\r",
        "\t",
        "\x00",
    ]
    if string is None:
        string = "None"
    for char in invalid_filename_chars:
        string = string.replace(char, "")
    string = string.strip().replace(" ", "_")
    string = string.strip(".")

    string = (string[:100]) if len(string) > 100 else string

    return string


def has_extension(filename, extensions):
    """Checks if a filename ends with one of the given extensions,
    ignoring case"""
    if not filename:
        return False
    filename = filename.strip().lower()
    return any(filename.endswith(extension.lower()) for extension in extensions)


def parse_email_headers(msg):
    """
    Extracts the headers used to identify a message in logs and summaries

    Only these headers are decoded, so the message parts are left alone.

    Args:
        msg (email.message.Message): A parsed message

    Returns:
        dict: ``message_id``, ``subject``, ``from_`` and ``date``, each
        ``None`` when missing or unreadable
    """
    headers = {}
    for key, name in (
        ("message_id", "Message-ID"),
        ("subject", "Subject"),
        ("from_", "From"),
        ("date", "Date"),
    ):
        value = msg.get(name)
        if value is not None:
            value = decode_header_part(str(value)) or None
        headers[key] = value

    return headers
