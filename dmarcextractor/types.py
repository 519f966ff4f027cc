from __future__ import annotations

from typing import List, Literal, Optional, TypedDict, Union

# NOTE: This module is intentionally Python 3.9 compatible.
# - No PEP 604 unions (A | B)
# - No typing.NotRequired / Required (3.11+).


CompressionKind = Literal["none", "gzip", "zip"]

OutcomeStatus = Literal["extracted", "skipped", "failed"]


class LeafPart(TypedDict):
    kind: Literal["leaf"]
    content_type: str
    filename: Optional[str]
    payload: bytes


class MultipartPart(TypedDict):
    kind: Literal["multipart"]
    content_type: str
    parts: List["MailPart"]


MailPart = Union[LeafPart, MultipartPart]


class Attachment(TypedDict):
    filename: Optional[str]
    content_type: str
    payload: bytes


class DecodedPayload(TypedDict):
    kind: CompressionKind
    content: bytes
    filename: Optional[str]


class AggregateReportMetadata(TypedDict):
    org_name: str
    org_email: Optional[str]
    org_extra_contact_info: Optional[str]
    report_id: Optional[str]
    begin_date: int
    end_date: int
    errors: List[str]


class AggregatePolicyPublished(TypedDict):
    domain: str
    adkim: str
    aspf: str
    p: Optional[str]
    sp: Optional[str]
    pct: str
    fo: str


class AggregateAuthResultDKIM(TypedDict):
    domain: str
    result: str
    selector: str


class AggregateAuthResultSPF(TypedDict):
    domain: str
    result: str
    scope: str


class AggregateAuthResults(TypedDict):
    dkim: List[AggregateAuthResultDKIM]
    spf: List[AggregateAuthResultSPF]


class AggregateRecord(TypedDict):
    source_ip: str
    count: int
    disposition: str
    dkim: str
    spf: str
    header_from: str
    envelope_from: Optional[str]
    envelope_to: Optional[str]
    auth_results: AggregateAuthResults


class AggregateReport(TypedDict):
    xml_schema: str
    report_metadata: AggregateReportMetadata
    policy_published: AggregatePolicyPublished
    records: List[AggregateRecord]


class MessageHeaders(TypedDict):
    message_id: Optional[str]
    subject: Optional[str]
    from_: Optional[str]
    date: Optional[str]


class ExtractionOutcome(TypedDict):
    status: OutcomeStatus
    message_id: Optional[str]
    message_id_header: Optional[str]
    attachment: Optional[str]
    output_path: Optional[str]
    reason: Optional[str]
    error_kind: Optional[str]
    error: Optional[str]


class ExtractionResults(TypedDict):
    extracted: int
    skipped: int
    failed: int
    stopped: bool
    outcomes: List[ExtractionOutcome]
    failures: List[ExtractionOutcome]
