# -*- coding: utf-8 -*-

"""A Python package for extracting DMARC aggregate reports from a mailbox"""

from __future__ import annotations

import email
import email.errors
import email.header
import email.message
import ipaddress
import os
import re
import tempfile
import xml.parsers.expat as expat
import zipfile
import zlib
from io import BytesIO
from typing import (
    Any,
    Callable,
    Dict,
    Iterator,
    List,
    Optional,
    Sequence,
    Union,
    cast,
)

import lxml.etree as etree
import xmltodict

from dmarcextractor.constants import (
    CHUNK_SIZE,
    DEFAULT_MAX_DECOMPRESSED_SIZE,
    GENERIC_CONTENT_TYPE,
    MAGIC_GZIP,
    MAGIC_ZIP,
    MAGIC_ZIP_EMPTY,
    REPORT_CONTENT_TYPES,
    REPORT_FILE_EXTENSIONS,
    __version__,
)
from dmarcextractor.log import logger
from dmarcextractor.mail import (
    IMAPConnection,
    MailboxAuthError,
    MailboxConnection,
    MailboxConnectionError,
    MailboxFailure,
    MailboxProtocolError,
    MaildirConnection,
)
from dmarcextractor.types import (
    AggregateAuthResultDKIM,
    AggregateAuthResultSPF,
    AggregateRecord,
    AggregateReport,
    Attachment,
    DecodedPayload,
    ExtractionOutcome,
    ExtractionResults,
    LeafPart,
    MailPart,
    OutcomeStatus,
)
from dmarcextractor.utils import (
    get_filename_safe_string,
    has_extension,
    parse_email_headers,
    timestamp_to_human,
)

logger.debug("dmarcextractor v{0}".format(__version__))

xml_header_regex = re.compile(r"^<\?xml .*?>", re.MULTILINE)
xml_schema_regex = re.compile(r"</??xs:schema.*>", re.MULTILINE)

# Send a keepalive to the mailbox every n messages
KEEPALIVE_INTERVAL = 20

__all__ = [
    "__version__",
    "ExtractorError",
    "MalformedMessage",
    "ArchiveError",
    "CorruptArchive",
    "PayloadTooLarge",
    "EmptyArchive",
    "InvalidDMARCReport",
    "MalformedDocument",
    "InvalidMetadata",
    "InvalidRecord",
    "DestinationUnavailable",
    "MailboxFailure",
    "MailboxConnectionError",
    "MailboxAuthError",
    "MailboxProtocolError",
    "MailboxConnection",
    "IMAPConnection",
    "MaildirConnection",
    "extract_report",
    "get_mail_part_tree",
    "find_report_attachments",
    "parse_aggregate_report_xml",
    "get_report_filename",
    "save_report",
    "extract_report_from_attachment",
    "extract_reports_from_message",
    "extract_reports_from_mailbox",
]


class ExtractorError(RuntimeError):
    """Raised whenever a report cannot be extracted for some reason"""


class MalformedMessage(ExtractorError):
    """Raised when an email message cannot be parsed as MIME"""


class ArchiveError(ExtractorError):
    """Raised when a report attachment cannot be decompressed"""


class CorruptArchive(ArchiveError):
    """Raised when a gzip or zip archive is damaged or unreadable"""


class PayloadTooLarge(ArchiveError):
    """Raised when a payload expands beyond the configured size ceiling"""


class EmptyArchive(ArchiveError):
    """Raised when a zip archive holds no file entries"""


class InvalidDMARCReport(ExtractorError):
    """Raised when an invalid DMARC aggregate report is encountered"""


class MalformedDocument(InvalidDMARCReport):
    """Raised when a report is not well-formed XML"""


class InvalidMetadata(InvalidDMARCReport):
    """Raised when the report metadata or published policy is missing
    or inconsistent"""


class InvalidRecord(InvalidDMARCReport):
    """Raised when a report contains a malformed record"""


class DestinationUnavailable(ExtractorError):
    """Raised when the output directory cannot be written to"""


def _decompress_gzip(content: bytes, max_size: int) -> bytes:
    output = BytesIO()
    size = 0
    data = content
    try:
        # A gzip file may hold several members, one after another
        while True:
            decompressor = zlib.decompressobj(zlib.MAX_WBITS | 16)
            while not decompressor.eof:
                chunk = decompressor.decompress(data, CHUNK_SIZE)
                data = decompressor.unconsumed_tail
                if not chunk and not data:
                    break
                size += len(chunk)
                if size > max_size:
                    raise PayloadTooLarge(
                        "gzip payload expands beyond {0} bytes".format(max_size)
                    )
                output.write(chunk)
            if not decompressor.eof:
                raise CorruptArchive("Invalid gzip file: unexpected end of stream")
            data = decompressor.unused_data
            if not data.startswith(MAGIC_GZIP):
                if data.strip(b"\x00"):
                    logger.debug(
                        "Ignoring {0} bytes after the gzip data".format(len(data))
                    )
                break
    except zlib.error as error:
        raise CorruptArchive(
            "Invalid gzip file: {0}".format(error.__str__())
        ) from error

    return output.getvalue()


def _decompress_zip(content: bytes, max_size: int) -> tuple[bytes, str]:
    try:
        with zipfile.ZipFile(BytesIO(content)) as archive:
            entries = [info for info in archive.infolist() if not info.is_dir()]
            if len(entries) == 0:
                raise EmptyArchive("The zip file does not contain any files")
            info = entries[0]
            if len(entries) > 1:
                logger.debug(
                    "Zip file has {0} entries, using {1}".format(
                        len(entries), info.filename
                    )
                )
            if info.file_size > max_size:
                raise PayloadTooLarge(
                    "{0} declares {1} bytes, more than {2}".format(
                        info.filename, info.file_size, max_size
                    )
                )
            output = BytesIO()
            size = 0
            with archive.open(info) as report_file:
                while True:
                    chunk = report_file.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    size += len(chunk)
                    if size > max_size:
                        raise PayloadTooLarge(
                            "{0} expands beyond {1} bytes".format(
                                info.filename, max_size
                            )
                        )
                    output.write(chunk)
            return output.getvalue(), info.filename

    except ArchiveError:
        raise
    except (
        zipfile.BadZipFile,
        zlib.error,
        EOFError,
        NotImplementedError,
        RuntimeError,
        ValueError,
        OSError,
    ) as error:
        raise CorruptArchive(
            "Invalid zip file: {0}".format(error.__str__())
        ) from error


def extract_report(
    content: Union[bytes, str],
    *,
    max_size: int = DEFAULT_MAX_DECOMPRESSED_SIZE,
) -> DecodedPayload:
    """
    Decompresses a report payload that may be a gzip file, a zip file, or
    plain XML

    The magic bytes at the start of the payload decide how it is read,
    regardless of the declared content type.

    Args:
        content: The attachment payload
        max_size (int): The maximum number of decompressed bytes allowed

    Returns:
        dict: ``kind`` (``none``, ``gzip`` or ``zip``), ``content`` and,
        for zip files, the ``filename`` of the entry that was used

    Raises:
        CorruptArchive: The archive is damaged
        EmptyArchive: The zip file has no file entries
        PayloadTooLarge: The output would be larger than ``max_size``
    """
    if isinstance(content, str):
        content = content.encode("utf-8")
    content = bytes(content)

    if content.startswith(MAGIC_GZIP):
        return {
            "kind": "gzip",
            "content": _decompress_gzip(content, max_size),
            "filename": None,
        }
    if content.startswith(MAGIC_ZIP) or content.startswith(MAGIC_ZIP_EMPTY):
        report, filename = _decompress_zip(content, max_size)
        return {"kind": "zip", "content": report, "filename": filename}

    if len(content) > max_size:
        raise PayloadTooLarge(
            "Payload is {0} bytes, more than {1}".format(len(content), max_size)
        )

    return {"kind": "none", "content": content, "filename": None}


def _get_part_filename(part: email.message.Message) -> Optional[str]:
    filename = part.get_filename()
    if filename is None:
        return None
    try:
        filename = str(email.header.make_header(email.header.decode_header(filename)))
    except (email.errors.HeaderParseError, LookupError, UnicodeDecodeError):
        logger.debug("Unable to decode attachment filename {0}".format(filename))
    filename = filename.strip()
    return filename or None


def _check_part_defects(part: email.message.Message) -> None:
    for defect in part.defects:
        if isinstance(
            defect,
            (
                email.errors.NoBoundaryInMultipartDefect,
                email.errors.StartBoundaryNotFoundDefect,
            ),
        ):
            raise MalformedMessage(
                "Unable to read the parts of a {0} container: {1}".format(
                    part.get_content_type(), defect.__class__.__name__
                )
            )


def get_mail_part_tree(msg: email.message.Message) -> MailPart:
    """
    Converts a parsed email message into a tree of mail parts

    Embedded ``message/rfc822`` parts, such as forwarded reports, are
    treated as containers.

    Args:
        msg: A message parsed by the ``email`` package

    Returns:
        dict: A ``leaf`` or ``multipart`` part
    """
    _check_part_defects(msg)
    content_type = msg.get_content_type().lower()
    if msg.is_multipart():
        parts = cast(List[email.message.Message], msg.get_payload())
        return {
            "kind": "multipart",
            "content_type": content_type,
            "parts": [get_mail_part_tree(part) for part in parts],
        }

    payload = msg.get_payload(decode=True)
    if not isinstance(payload, bytes):
        payload = b""
    return {
        "kind": "leaf",
        "content_type": content_type,
        "filename": _get_part_filename(msg),
        "payload": payload,
    }


def _iter_leaf_parts(part: MailPart) -> Iterator[LeafPart]:
    if part["kind"] == "multipart":
        for subpart in part["parts"]:
            yield from _iter_leaf_parts(subpart)
    else:
        yield part


def _is_report_candidate(
    part: LeafPart,
    content_types: Sequence[str],
    extensions: Sequence[str],
) -> bool:
    if part["content_type"] in content_types:
        return True
    if has_extension(part["filename"], extensions):
        return True
    if part["content_type"] == GENERIC_CONTENT_TYPE:
        return part["payload"].startswith((MAGIC_GZIP, MAGIC_ZIP, MAGIC_ZIP_EMPTY))
    return False


def _message_from_content(msg_content: Union[bytes, str]) -> email.message.Message:
    if isinstance(msg_content, str):
        msg_content = msg_content.encode("utf-8", errors="surrogateescape")
    if not msg_content or not msg_content.strip():
        raise MalformedMessage("The message is empty")
    msg = email.message_from_bytes(bytes(msg_content))
    if len(msg.keys()) == 0:
        raise MalformedMessage("The message does not have any headers")
    return msg


def find_report_attachments(
    msg_content: Union[bytes, str, email.message.Message],
    *,
    content_types: Sequence[str] = REPORT_CONTENT_TYPES,
    extensions: Sequence[str] = REPORT_FILE_EXTENSIONS,
) -> Iterator[Attachment]:
    """
    Finds the parts of an email message that may hold a DMARC aggregate
    report

    A part is a candidate when its content type or the extension of its
    filename is known. ``application/octet-stream`` parts are also
    candidates when their content starts with gzip or zip magic bytes.
    Everything else is skipped.

    Args:
        msg_content: The RFC 822 message, or a message already parsed by
            the ``email`` package
        content_types (list): Content types that mark a report
        extensions (list): Filename extensions that mark a report

    Yields:
        dict: Candidate attachments, in message order

    Raises:
        MalformedMessage: The message cannot be parsed as MIME. Raised on
        the first iteration.
    """
    if isinstance(msg_content, email.message.Message):
        msg = msg_content
    else:
        msg = _message_from_content(msg_content)
    tree = get_mail_part_tree(msg)
    content_types = [content_type.lower() for content_type in content_types]
    for part in _iter_leaf_parts(tree):
        if not _is_report_candidate(part, content_types, extensions):
            logger.debug(
                "Skipping {0} part {1}".format(part["content_type"], part["filename"])
            )
            continue
        yield {
            "filename": part["filename"],
            "content_type": part["content_type"],
            "payload": part["payload"],
        }


def _strip_namespace_prefix(path, key, value):
    if not key.startswith("@") and ":" in key:
        key = key.split(":", 1)[1]
    return key, value


def _parse_xml_tree(xml: bytes):
    """Parses XML with entity expansion and network access disabled,
    retrying once with common header defects fixed"""
    parser = etree.XMLParser(
        resolve_entities=False, no_network=True, huge_tree=False, remove_pis=True
    )
    try:
        return etree.fromstring(xml, parser)
    except etree.XMLSyntaxError as error:
        first_error = error

    # Replace XML header (sometimes they are invalid)
    text = xml.decode("utf-8", errors="replace").lstrip("\ufeff")
    text = xml_header_regex.sub('<?xml version="1.0"?>', text)
    # Remove invalid schema tags
    text = xml_schema_regex.sub("", text)
    try:
        return etree.fromstring(text.encode("utf-8"), parser)
    except etree.XMLSyntaxError:
        raise MalformedDocument(
            "Invalid XML: {0}".format(first_error.__str__())
        ) from first_error


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _get_text(value: Any) -> Optional[str]:
    if isinstance(value, list):
        value = value[0] if len(value) > 0 else None
    if isinstance(value, dict):
        value = value.get("#text")
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _get_section(parent: Dict[str, Any], key: str) -> Optional[Dict[str, Any]]:
    section = parent.get(key)
    if isinstance(section, list):
        section = section[0] if len(section) > 0 else None
    if not isinstance(section, dict):
        return None
    return section


def _parse_timestamp(date_range: Dict[str, Any], name: str) -> int:
    value = _get_text(date_range.get(name))
    if value is None:
        raise InvalidMetadata("The date range is missing {0}".format(name))
    try:
        timestamp = int(value)
    except ValueError:
        raise InvalidMetadata(
            "The date range {0} is not a timestamp: {1}".format(name, value)
        )
    if timestamp < 0:
        raise InvalidMetadata(
            "The date range {0} is negative: {1}".format(name, timestamp)
        )
    return timestamp


def _parse_report_record(record: Any, index: int) -> AggregateRecord:
    """
    Validates a record from a DMARC aggregate report and converts it into a
    more consistent format

    Args:
        record: The record as parsed by xmltodict
        index (int): The position of the record in the report

    Returns:
        dict: The converted record
    """
    if not isinstance(record, dict):
        raise InvalidRecord("Record {0} is empty".format(index))
    row = _get_section(record, "row")
    if row is None:
        raise InvalidRecord("Record {0} is missing the row element".format(index))

    source_ip = _get_text(row.get("source_ip"))
    if source_ip is None:
        raise InvalidRecord(
            "Record {0} is missing the source IP address".format(index)
        )
    try:
        ipaddress.ip_address(source_ip)
    except ValueError:
        raise InvalidRecord(
            "Record {0} has an invalid source IP address: {1}".format(
                index, source_ip
            )
        )

    count_text = _get_text(row.get("count"))
    if count_text is None:
        raise InvalidRecord("Record {0} is missing the message count".format(index))
    try:
        count = int(count_text)
    except ValueError:
        raise InvalidRecord(
            "Record {0} has an invalid message count: {1}".format(index, count_text)
        )
    if count < 0:
        raise InvalidRecord(
            "Record {0} has a negative message count: {1}".format(index, count)
        )

    policy_evaluated = _get_section(row, "policy_evaluated") or {}
    disposition = _get_text(policy_evaluated.get("disposition")) or "none"
    if disposition.lower() == "pass":
        disposition = "none"
    dkim = _get_text(policy_evaluated.get("dkim")) or "fail"
    spf = _get_text(policy_evaluated.get("spf")) or "fail"

    identifiers = (
        _get_section(record, "identifiers") or _get_section(record, "identities") or {}
    )
    header_from = (_get_text(identifiers.get("header_from")) or "").lower()

    auth_results = _get_section(record, "auth_results") or {}
    dkim_results: List[AggregateAuthResultDKIM] = []
    for result in _as_list(auth_results.get("dkim")):
        if not isinstance(result, dict):
            continue
        domain = _get_text(result.get("domain"))
        if domain is None:
            continue
        dkim_results.append(
            {
                "domain": domain,
                "selector": _get_text(result.get("selector")) or "none",
                "result": _get_text(result.get("result")) or "none",
            }
        )
    spf_results: List[AggregateAuthResultSPF] = []
    for result in _as_list(auth_results.get("spf")):
        if not isinstance(result, dict):
            continue
        domain = _get_text(result.get("domain"))
        if domain is None:
            continue
        spf_results.append(
            {
                "domain": domain,
                "scope": _get_text(result.get("scope")) or "mfrom",
                "result": _get_text(result.get("result")) or "none",
            }
        )

    envelope_from = _get_text(identifiers.get("envelope_from"))
    if envelope_from is None and len(spf_results) > 0:
        envelope_from = spf_results[-1]["domain"]
    if envelope_from is not None:
        envelope_from = envelope_from.lower()

    return {
        "source_ip": source_ip,
        "count": count,
        "disposition": disposition,
        "dkim": dkim,
        "spf": spf,
        "header_from": header_from,
        "envelope_from": envelope_from,
        "envelope_to": _get_text(identifiers.get("envelope_to")),
        "auth_results": {"dkim": dkim_results, "spf": spf_results},
    }


def parse_aggregate_report_xml(xml: Union[bytes, str]) -> AggregateReport:
    """Parses and validates a DMARC aggregate report

    A report is rejected as a whole if any part of it is invalid.
    Elements that are not part of the aggregate report schema are ignored.

    Args:
        xml: The report XML

    Returns:
        dict: The parsed aggregate DMARC report

    Raises:
        MalformedDocument: The report is not well-formed XML
        InvalidMetadata: The report metadata or published policy is
        missing or inconsistent
        InvalidRecord: A record is missing its source IP address or count
    """
    if isinstance(xml, str):
        xml = xml.encode("utf-8")
    if not xml.strip():
        raise MalformedDocument("Invalid XML: the document is empty")

    root = _parse_xml_tree(bytes(xml))
    try:
        document = xmltodict.parse(
            etree.tostring(root), postprocessor=_strip_namespace_prefix
        )
    except expat.ExpatError as error:
        raise MalformedDocument(
            "Invalid XML: {0}".format(error.__str__())
        ) from error

    report = document.get("feedback")
    if not isinstance(report, dict):
        raise InvalidMetadata("The document is not a DMARC aggregate report")

    report_metadata = _get_section(report, "report_metadata")
    if report_metadata is None:
        raise InvalidMetadata("The report_metadata section is missing")
    org_name = _get_text(report_metadata.get("org_name"))
    if org_name is None:
        raise InvalidMetadata("Organization name is missing")
    date_range = _get_section(report_metadata, "date_range")
    if date_range is None:
        raise InvalidMetadata("The date range is missing")
    begin_date = _parse_timestamp(date_range, "begin")
    end_date = _parse_timestamp(date_range, "end")
    if begin_date > end_date:
        raise InvalidMetadata(
            "The date range begins after it ends ({0} > {1})".format(
                timestamp_to_human(begin_date), timestamp_to_human(end_date)
            )
        )

    report_id = _get_text(report_metadata.get("report_id"))
    if report_id is not None:
        report_id = report_id.replace("<", "").replace(">", "")
    errors = [
        error
        for error in map(_get_text, _as_list(report_metadata.get("error")))
        if error is not None
    ]

    policy_published = _get_section(report, "policy_published")
    if policy_published is None:
        raise InvalidMetadata("The policy_published section is missing")
    domain = _get_text(policy_published.get("domain"))
    if domain is None:
        raise InvalidMetadata("The published policy domain is missing")
    p = _get_text(policy_published.get("p"))

    records = [
        _parse_report_record(record, index)
        for index, record in enumerate(_as_list(report.get("record")))
    ]

    logger.debug(
        "Parsed report from {0} for {1} with {2} records".format(
            org_name, domain, len(records)
        )
    )

    return {
        "xml_schema": _get_text(report.get("version")) or "draft",
        "report_metadata": {
            "org_name": org_name,
            "org_email": _get_text(report_metadata.get("email")),
            "org_extra_contact_info": _get_text(
                report_metadata.get("extra_contact_info")
            ),
            "report_id": report_id,
            "begin_date": begin_date,
            "end_date": end_date,
            "errors": errors,
        },
        "policy_published": {
            "domain": domain,
            "adkim": _get_text(policy_published.get("adkim")) or "r",
            "aspf": _get_text(policy_published.get("aspf")) or "r",
            "p": p,
            "sp": _get_text(policy_published.get("sp")) or p,
            "pct": _get_text(policy_published.get("pct")) or "100",
            "fo": _get_text(policy_published.get("fo")) or "0",
        },
        "records": records,
    }


def get_report_filename(report: AggregateReport) -> str:
    """
    Returns the output filename for a report

    The name is built from the reporting organization, the policy domain,
    the date range and, when the report has one, the report ID. The same
    report always gets the same name, and reports that differ only in
    their ID do not overwrite each other.

    Args:
        report: A parsed aggregate report

    Returns:
        str: A filename like
        ``google.com_example.com_1530403200_1530489599_5717107811868587391.xml``
    """
    metadata = report["report_metadata"]
    parts = [
        get_filename_safe_string(metadata["org_name"]),
        get_filename_safe_string(report["policy_published"]["domain"]),
        str(metadata["begin_date"]),
        str(metadata["end_date"]),
    ]
    if metadata["report_id"] is not None:
        report_id = get_filename_safe_string(metadata["report_id"])
        if report_id:
            parts.append(report_id)
    return "{0}.xml".format("_".join(parts))


def _check_output_directory(output_directory: str) -> None:
    if not os.path.isdir(output_directory):
        raise DestinationUnavailable(
            "{0} is not an existing directory".format(output_directory)
        )
    if not os.access(output_directory, os.W_OK | os.X_OK):
        raise DestinationUnavailable("{0} is not writable".format(output_directory))


def save_report(
    report: AggregateReport,
    content: bytes,
    output_directory: str,
) -> str:
    """
    Saves a validated report in the given directory

    The content is written to a temporary file in the same directory and
    then renamed, so the final path either holds the complete report or
    is left untouched. An existing file with the same name is replaced.

    Args:
        report: The parsed report, used to name the file
        content (bytes): The decompressed report, written as is
        output_directory (str): An existing directory

    Returns:
        str: The path of the saved report
    """
    output_directory = os.path.expanduser(output_directory)
    _check_output_directory(output_directory)
    path = os.path.join(output_directory, get_report_filename(report))

    temp_path = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="wb",
            dir=output_directory,
            prefix=".dmarcextractor-",
            suffix=".tmp",
            delete=False,
        ) as temp_file:
            temp_path = temp_file.name
            temp_file.write(content)
            temp_file.flush()
            os.fsync(temp_file.fileno())
        os.chmod(temp_path, 0o644)
        os.replace(temp_path, path)
    except OSError as error:
        if temp_path is not None and os.path.exists(temp_path):
            os.remove(temp_path)
        raise DestinationUnavailable(
            "Unable to save {0}: {1}".format(path, error.__str__())
        ) from error

    logger.info("Saved report to {0}".format(path))
    return path


def extract_report_from_attachment(
    attachment: Attachment,
    output_directory: str,
    *,
    max_size: int = DEFAULT_MAX_DECOMPRESSED_SIZE,
) -> str:
    """
    Decompresses, validates and saves the report in an attachment

    Args:
        attachment: A candidate attachment
        output_directory (str): The directory to save the report in
        max_size (int): The maximum number of decompressed bytes allowed

    Returns:
        str: The path of the saved report
    """
    payload = extract_report(attachment["payload"], max_size=max_size)
    logger.debug(
        "Decoded {0} bytes from {1} attachment {2}".format(
            len(payload["content"]), payload["kind"], attachment["filename"]
        )
    )
    report = parse_aggregate_report_xml(payload["content"])
    return save_report(report, payload["content"], output_directory)


def _outcome(
    status: OutcomeStatus,
    message_id: Optional[str],
    *,
    message_id_header: Optional[str] = None,
    attachment: Optional[str] = None,
    output_path: Optional[str] = None,
    reason: Optional[str] = None,
    error: Optional[BaseException] = None,
) -> ExtractionOutcome:
    return {
        "status": status,
        "message_id": message_id,
        "message_id_header": message_id_header,
        "attachment": attachment,
        "output_path": output_path,
        "reason": reason,
        "error_kind": None if error is None else error.__class__.__name__,
        "error": None if error is None else error.__str__(),
    }


def extract_reports_from_message(
    msg_content: Union[bytes, str],
    output_directory: str,
    *,
    message_id: Optional[Union[int, str]] = None,
    max_size: int = DEFAULT_MAX_DECOMPRESSED_SIZE,
    content_types: Sequence[str] = REPORT_CONTENT_TYPES,
    extensions: Sequence[str] = REPORT_FILE_EXTENSIONS,
) -> List[ExtractionOutcome]:
    """
    Extracts every DMARC aggregate report attached to an email message

    Failures are recorded in the returned outcomes instead of being raised.

    Args:
        msg_content: The RFC 822 message
        output_directory (str): The directory to save reports in
        message_id: The mailbox ID of the message (defaults to the
            ``Message-ID`` header)
        max_size (int): The maximum number of decompressed bytes allowed
        content_types (list): Content types that mark a report
        extensions (list): Filename extensions that mark a report

    Returns:
        list: One ``extracted`` or ``failed`` outcome per candidate
        attachment, a single ``skipped`` outcome when there are none, or a
        single ``failed`` outcome when the message is malformed
    """
    if message_id is not None:
        message_id = str(message_id)
    try:
        msg = _message_from_content(msg_content)
    except MalformedMessage as error:
        logger.warning("Message {0} is malformed: {1}".format(message_id, error))
        return [_outcome("failed", message_id, error=error)]

    headers = parse_email_headers(msg)
    message_id_header = headers["message_id"]
    if message_id is None:
        message_id = message_id_header
    logger.info(
        'Processing message {0} from {1}: "{2}"'.format(
            message_id, headers["from_"], headers["subject"]
        )
    )

    outcomes: List[ExtractionOutcome] = []
    try:
        for attachment in find_report_attachments(
            msg, content_types=content_types, extensions=extensions
        ):
            name = attachment["filename"] or attachment["content_type"]
            try:
                output_path = extract_report_from_attachment(
                    attachment, output_directory, max_size=max_size
                )
                outcomes.append(
                    _outcome(
                        "extracted",
                        message_id,
                        message_id_header=message_id_header,
                        attachment=name,
                        output_path=output_path,
                    )
                )
            except ExtractorError as error:
                logger.warning(
                    "Unable to extract {0} from message {1}: {2}".format(
                        name, message_id, error
                    )
                )
                outcomes.append(
                    _outcome(
                        "failed",
                        message_id,
                        message_id_header=message_id_header,
                        attachment=name,
                        error=error,
                    )
                )
    except MalformedMessage as error:
        logger.warning("Message {0} is malformed: {1}".format(message_id, error))
        return [
            _outcome(
                "failed",
                message_id,
                message_id_header=message_id_header,
                error=error,
            )
        ]

    if len(outcomes) == 0:
        logger.info("No DMARC report attachment in message {0}".format(message_id))
        outcomes.append(
            _outcome(
                "skipped",
                message_id,
                message_id_header=message_id_header,
                reason="No DMARC report attachment found",
            )
        )

    return outcomes


def _summarize(
    outcomes: List[ExtractionOutcome], stopped: bool = False
) -> ExtractionResults:
    failures = [outcome for outcome in outcomes if outcome["status"] == "failed"]
    return {
        "extracted": len(
            [outcome for outcome in outcomes if outcome["status"] == "extracted"]
        ),
        "skipped": len(
            [outcome for outcome in outcomes if outcome["status"] == "skipped"]
        ),
        "failed": len(failures),
        "stopped": stopped,
        "outcomes": outcomes,
        "failures": failures,
    }


def extract_reports_from_mailbox(
    connection: MailboxConnection,
    output_directory: str,
    *,
    reports_folder: str = "INBOX",
    max_size: int = DEFAULT_MAX_DECOMPRESSED_SIZE,
    content_types: Sequence[str] = REPORT_CONTENT_TYPES,
    extensions: Sequence[str] = REPORT_FILE_EXTENSIONS,
    progress_callback: Optional[Callable[[int, int], None]] = None,
    should_stop: Optional[Callable[[], bool]] = None,
) -> ExtractionResults:
    """
    Fetches messages from a mailbox and extracts their DMARC aggregate
    reports

    Messages are processed one at a time. A message that cannot be
    processed is recorded as failed and the run continues.

    Args:
        connection: A Mailbox connection object
        output_directory (str): An existing directory to save reports in
        reports_folder (str): The folder where reports can be found
        max_size (int): The maximum number of decompressed bytes allowed
        content_types (list): Content types that mark a report
        extensions (list): Filename extensions that mark a report
        progress_callback (callable): Called with the number of processed
            messages and the total after each message
        should_stop (callable): Checked before each message; the run ends
            early when it returns ``True``

    Returns:
        dict: The ``extracted``, ``skipped`` and ``failed`` counts,
        whether the run was ``stopped``, every outcome and the failures

    Raises:
        DestinationUnavailable: The output directory cannot be used
        MailboxFailure: The mailbox cannot be listed or read
    """
    if connection is None:
        raise ValueError("Must supply a connection")

    output_directory = os.path.expanduser(output_directory)
    _check_output_directory(output_directory)

    messages = connection.fetch_messages(reports_folder)
    total_messages = len(messages)
    logger.debug("Found {0} messages in {1}".format(total_messages, reports_folder))

    outcomes: List[ExtractionOutcome] = []
    stopped = False
    for i, msg_uid in enumerate(messages):
        if should_stop is not None and should_stop():
            logger.info(
                "Stopping after {0} of {1} messages".format(i, total_messages)
            )
            stopped = True
            break
        if i > 0 and i % KEEPALIVE_INTERVAL == 0:
            logger.debug("Sending keepalive cmd")
            connection.keepalive()
        logger.debug(
            "Processing message {0} of {1}: UID {2}".format(
                i + 1, total_messages, msg_uid
            )
        )
        msg_content = connection.fetch_message(msg_uid)
        try:
            outcomes += extract_reports_from_message(
                msg_content,
                output_directory,
                message_id=msg_uid,
                max_size=max_size,
                content_types=content_types,
                extensions=extensions,
            )
        except Exception as error:
            logger.exception(
                "Unexpected error while processing message {0}".format(msg_uid)
            )
            outcomes.append(_outcome("failed", str(msg_uid), error=error))
        if progress_callback is not None:
            progress_callback(i + 1, total_messages)

    results = _summarize(outcomes, stopped)
    logger.info(
        "Extracted {0} reports, skipped {1} messages, {2} failures".format(
            results["extracted"], results["skipped"], results["failed"]
        )
    )
    return results
