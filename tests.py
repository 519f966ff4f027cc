import email
import gzip
import mailbox
import os
import shutil
import tempfile
import unittest
import zipfile
from argparse import Namespace
from email import encoders
from email.mime.base import MIMEBase
from email.mime.message import MIMEMessage
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from glob import glob
from io import BytesIO

from lxml import etree

import dmarcextractor
import dmarcextractor.cli
import dmarcextractor.utils
from dmarcextractor.mail import (
    MailboxConnection,
    MailboxConnectionError,
    MailboxProtocolError,
    MaildirConnection,
)

SAMPLES = os.path.join(os.path.dirname(os.path.abspath(__file__)), "samples")


def minify_xml(xml_string):
    parser = etree.XMLParser(remove_blank_text=True)
    tree = etree.fromstring(xml_string.encode('utf-8'), parser)
    return etree.tostring(tree, pretty_print=False).decode('utf-8')


def compare_xml(xml1, xml2):
    parser = etree.XMLParser(remove_blank_text=True)
    tree1 = etree.fromstring(xml1.encode('utf-8'), parser)
    tree2 = etree.fromstring(xml2.encode('utf-8'), parser)
    return etree.tostring(tree1) == etree.tostring(tree2)


def read_sample(name):
    with open(os.path.join(SAMPLES, name), "rb") as f:
        return f.read()


def make_zip(files):
    buffer = BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        for name, content in files:
            archive.writestr(name, content)
    return buffer.getvalue()


def make_message(attachments, subject="Report Domain: example.com",
                 message_id="<report-1@example.net>"):
    msg = MIMEMultipart()
    msg["From"] = "noreply-dmarc-support@google.com"
    msg["To"] = "dmarc@example.com"
    msg["Subject"] = subject
    msg["Message-ID"] = message_id
    msg.attach(MIMEText("This is an aggregate report from google.com."))
    for filename, content_type, payload in attachments:
        maintype, subtype = content_type.split("/")
        part = MIMEBase(maintype, subtype)
        part.set_payload(payload)
        encoders.encode_base64(part)
        if filename is not None:
            part.add_header("Content-Disposition", "attachment",
                            filename=filename)
        msg.attach(part)
    return msg.as_bytes()


class FakeConnection(MailboxConnection):
    def __init__(self, messages, fail_on=None):
        self._messages = messages
        self._fail_on = fail_on
        self.keepalives = 0

    def fetch_messages(self, reports_folder, **kwargs):
        return list(self._messages.keys())

    def fetch_message(self, message_id):
        if message_id == self._fail_on:
            raise MailboxConnectionError("Connection reset by peer")
        return self._messages[message_id]

    def keepalive(self):
        self.keepalives += 1


class Test(unittest.TestCase):
    def setUp(self):
        self.output_directory = tempfile.mkdtemp()
        self.nice_input = read_sample("extract_report/nice-input.xml")

    def tearDown(self):
        shutil.rmtree(self.output_directory)

    def testExtractReportXMLComparator(self):
        """Test XML comparator function"""
        print()
        xmlnice = self.nice_input.decode("utf-8")
        xmlchanged = minify_xml(
            read_sample("extract_report/changed-input.xml").decode("utf-8"))
        self.assertTrue(compare_xml(xmlnice, xmlnice))
        self.assertTrue(compare_xml(xmlchanged, xmlchanged))
        self.assertFalse(compare_xml(xmlnice, xmlchanged))
        self.assertFalse(compare_xml(xmlchanged, xmlnice))
        print("Passed!")

    def testExtractReportXML(self):
        """Test extract report function for plain XML input"""
        payload = dmarcextractor.extract_report(self.nice_input)
        self.assertEqual(payload["kind"], "none")
        self.assertEqual(payload["content"], self.nice_input)

    def testExtractReportString(self):
        """Test extract report function for string input"""
        payload = dmarcextractor.extract_report(
            self.nice_input.decode("utf-8"))
        self.assertTrue(compare_xml(payload["content"].decode("utf-8"),
                                    self.nice_input.decode("utf-8")))

    def testExtractReportGZip(self):
        """Test extract report function for gzip input"""
        payload = dmarcextractor.extract_report(gzip.compress(self.nice_input))
        self.assertEqual(payload["kind"], "gzip")
        self.assertEqual(payload["content"], self.nice_input)

    def testExtractReportZip(self):
        """Test extract report function for zip input"""
        content = make_zip([("google.com!example.com!1530403200!1530489599.xml",
                             self.nice_input)])
        payload = dmarcextractor.extract_report(content)
        self.assertEqual(payload["kind"], "zip")
        self.assertEqual(payload["content"], self.nice_input)
        self.assertEqual(payload["filename"],
                         "google.com!example.com!1530403200!1530489599.xml")

    def testExtractReportZipSkipsDirectories(self):
        """Directory entries in a zip file are not reports"""
        buffer = BytesIO()
        with zipfile.ZipFile(buffer, "w") as archive:
            archive.writestr(zipfile.ZipInfo("reports/"), b"")
            archive.writestr("reports/report.xml", self.nice_input)
        payload = dmarcextractor.extract_report(buffer.getvalue())
        self.assertEqual(payload["filename"], "reports/report.xml")
        self.assertEqual(payload["content"], self.nice_input)

    def testEmptyZip(self):
        """A zip file without file entries is an empty archive"""
        buffer = BytesIO()
        with zipfile.ZipFile(buffer, "w"):
            pass
        with self.assertRaises(dmarcextractor.EmptyArchive):
            dmarcextractor.extract_report(buffer.getvalue())

        buffer = BytesIO()
        with zipfile.ZipFile(buffer, "w") as archive:
            archive.writestr(zipfile.ZipInfo("reports/"), b"")
        with self.assertRaises(dmarcextractor.EmptyArchive):
            dmarcextractor.extract_report(buffer.getvalue())

    def testCorruptArchives(self):
        """Damaged archives are reported as corrupt"""
        with self.assertRaises(dmarcextractor.CorruptArchive):
            dmarcextractor.extract_report(
                dmarcextractor.MAGIC_GZIP + b"this is not gzip data")
        with self.assertRaises(dmarcextractor.CorruptArchive):
            dmarcextractor.extract_report(
                gzip.compress(self.nice_input)[:-20])
        with self.assertRaises(dmarcextractor.CorruptArchive):
            dmarcextractor.extract_report(b"PK\x03\x04" + b"\x00" * 100)

    def testPayloadTooLarge(self):
        """Decompression stops at the size ceiling"""
        data = b"\x00" * (2 * 1024 * 1024)
        max_size = 1024 * 1024
        with self.assertRaises(dmarcextractor.PayloadTooLarge):
            dmarcextractor.extract_report(gzip.compress(data),
                                          max_size=max_size)
        with self.assertRaises(dmarcextractor.PayloadTooLarge):
            dmarcextractor.extract_report(make_zip([("bomb.xml", data)]),
                                          max_size=max_size)
        with self.assertRaises(dmarcextractor.PayloadTooLarge):
            dmarcextractor.extract_report(self.nice_input, max_size=100)
        payload = dmarcextractor.extract_report(
            gzip.compress(self.nice_input), max_size=len(self.nice_input))
        self.assertEqual(payload["content"], self.nice_input)

    def testExtractReportMultiMemberGZip(self):
        """Every member of a concatenated gzip file is decompressed"""
        half = len(self.nice_input) // 2
        content = (gzip.compress(self.nice_input[:half]) +
                   gzip.compress(self.nice_input[half:]))
        payload = dmarcextractor.extract_report(content)
        self.assertEqual(payload["kind"], "gzip")
        self.assertEqual(payload["content"], self.nice_input)
        self.assertEqual(payload["content"], gzip.decompress(content))

        # The size ceiling covers all members together
        with self.assertRaises(dmarcextractor.PayloadTooLarge):
            dmarcextractor.extract_report(content, max_size=half + 10)
        with self.assertRaises(dmarcextractor.CorruptArchive):
            dmarcextractor.extract_report(
                content + gzip.compress(self.nice_input)[:-20])

    def testPayloadTooLargeIsNotSaved(self):
        """Nothing is written for a report beyond the size ceiling"""
        msg = make_message([
            ("report.xml.gz", "application/gzip",
             gzip.compress(self.nice_input)),
        ])
        outcomes = dmarcextractor.extract_reports_from_message(
            msg, self.output_directory, max_size=100)
        self.assertEqual(len(outcomes), 1)
        self.assertEqual(outcomes[0]["status"], "failed")
        self.assertEqual(outcomes[0]["error_kind"], "PayloadTooLarge")
        self.assertEqual(os.listdir(self.output_directory), [])

    def testAggregateSamples(self):
        """Test sample aggregate DMARC reports"""
        print()
        sample_paths = glob(os.path.join(SAMPLES, "aggregate", "*.xml"))
        self.assertTrue(len(sample_paths) > 0)
        for sample_path in sample_paths:
            print("Testing {0}: ".format(sample_path), end="")
            with open(sample_path, "rb") as f:
                report = dmarcextractor.parse_aggregate_report_xml(f.read())
            self.assertTrue(report["report_metadata"]["org_name"])
            self.assertTrue(report["policy_published"]["domain"])
            print("Passed!")

    def testParseAggregateReport(self):
        """Test the parsed form of a report"""
        report = dmarcextractor.parse_aggregate_report_xml(self.nice_input)
        metadata = report["report_metadata"]
        self.assertEqual(report["xml_schema"], "draft")
        self.assertEqual(metadata["org_name"], "google.com")
        self.assertEqual(metadata["report_id"], "5717107811868587391")
        self.assertEqual(metadata["begin_date"], 1530403200)
        self.assertEqual(metadata["end_date"], 1530489599)
        self.assertEqual(report["policy_published"]["domain"], "example.com")
        self.assertEqual(report["policy_published"]["fo"], "0")
        self.assertEqual(len(report["records"]), 2)
        first, second = report["records"]
        self.assertEqual(first["source_ip"], "209.85.220.41")
        self.assertEqual(first["count"], 2)
        self.assertEqual(first["header_from"], "example.com")
        self.assertEqual(first["auth_results"]["dkim"][0]["selector"],
                         "google")
        self.assertEqual(second["source_ip"], "2001:db8::25")
        self.assertEqual(second["disposition"], "quarantine")
        self.assertEqual(second["envelope_from"], "bounce.example.net")

    def testNamespacedReports(self):
        """Reports with namespaces and element prefixes are accepted"""
        report = dmarcextractor.parse_aggregate_report_xml(
            read_sample("aggregate/prefixed-namespace.xml"))
        self.assertEqual(report["report_metadata"]["org_name"], "Mail.Ru")
        self.assertEqual(report["records"][0]["header_from"], "example.com")
        self.assertEqual(report["records"][0]["envelope_from"],
                         "mailer.example.com")

        report = dmarcextractor.parse_aggregate_report_xml(
            read_sample("aggregate/dmarc-2.0-namespace.xml"))
        self.assertEqual(report["report_metadata"]["report_id"],
                         "20240101.example.com@mail.example.net")
        self.assertEqual(report["records"][0]["disposition"], "none")
        self.assertEqual(len(report["records"][0]["auth_results"]["dkim"]), 2)

    def testInvalidSchemaTag(self):
        """Stray schema tags are removed before giving up on a report"""
        report = dmarcextractor.parse_aggregate_report_xml(
            read_sample("aggregate/schema-tag.xml"))
        self.assertEqual(report["records"][0]["count"], 4)

    def testNoRecords(self):
        """A report with zero records is valid"""
        report = dmarcextractor.parse_aggregate_report_xml(
            read_sample("aggregate/no-records.xml"))
        self.assertEqual(report["records"], [])

    def testInvalidReports(self):
        """Test invalid aggregate reports"""
        with self.assertRaises(dmarcextractor.InvalidMetadata):
            dmarcextractor.parse_aggregate_report_xml(
                read_sample("invalid/begin-after-end.xml"))
        with self.assertRaises(dmarcextractor.InvalidMetadata):
            dmarcextractor.parse_aggregate_report_xml(
                read_sample("invalid/missing-org-name.xml"))
        with self.assertRaises(dmarcextractor.InvalidRecord):
            dmarcextractor.parse_aggregate_report_xml(
                read_sample("invalid/missing-source-ip.xml"))
        with self.assertRaises(dmarcextractor.MalformedDocument):
            dmarcextractor.parse_aggregate_report_xml(
                read_sample("invalid/malformed.xml"))
        with self.assertRaises(dmarcextractor.MalformedDocument):
            dmarcextractor.parse_aggregate_report_xml(b"")
        with self.assertRaises(dmarcextractor.InvalidMetadata):
            dmarcextractor.parse_aggregate_report_xml(
                b"<html><body>Not a report</body></html>")

    def testInvalidRecordValues(self):
        """Records with bad addresses or counts are rejected"""
        record = ("<record><row><source_ip>{0}</source_ip>"
                  "<count>{1}</count></row></record>")
        for source_ip, count in (("192.0.2.300", "1"),
                                 ("192.0.2.1", "-1"),
                                 ("192.0.2.1", "many")):
            xml = self.nice_input.replace(
                b"</feedback>",
                record.format(source_ip, count).encode("utf-8") +
                b"</feedback>")
            with self.assertRaises(dmarcextractor.InvalidRecord):
                dmarcextractor.parse_aggregate_report_xml(xml)

    def testExternalEntitiesAreNotResolved(self):
        """Entities are never fetched from the filesystem"""
        xml = (b'<?xml version="1.0"?>'
               b'<!DOCTYPE feedback [<!ENTITY xxe SYSTEM '
               b'"file:///etc/passwd">]>'
               b'<feedback><report_metadata><org_name>&xxe;</org_name>'
               b'<date_range><begin>1</begin><end>2</end></date_range>'
               b'</report_metadata><policy_published>'
               b'<domain>example.com</domain></policy_published></feedback>')
        try:
            report = dmarcextractor.parse_aggregate_report_xml(xml)
        except dmarcextractor.InvalidDMARCReport:
            return
        self.assertNotIn("root:", report["report_metadata"]["org_name"])

    def testFindReportAttachments(self):
        """Only report attachments are candidates"""
        msg = make_message([
            ("invoice.pdf", "application/pdf", b"%PDF-1.4 not a report"),
            ("google.com!example.com!1530403200!1530489599.xml.gz",
             "application/gzip", gzip.compress(self.nice_input)),
        ])
        attachments = list(dmarcextractor.find_report_attachments(msg))
        self.assertEqual(len(attachments), 1)
        self.assertEqual(attachments[0]["content_type"], "application/gzip")
        payload = dmarcextractor.extract_report(attachments[0]["payload"])
        self.assertEqual(payload["content"], self.nice_input)

    def testOctetStreamAttachments(self):
        """Generic attachments are identified by magic bytes or extension"""
        msg = make_message([
            ("report.bin", "application/octet-stream",
             gzip.compress(self.nice_input)),
            ("data.bin", "application/octet-stream", b"just some bytes"),
            ("REPORT.XML.GZ", "application/octet-stream", b"not gzip"),
        ])
        attachments = list(dmarcextractor.find_report_attachments(msg))
        self.assertEqual([a["filename"] for a in attachments],
                         ["report.bin", "REPORT.XML.GZ"])

    def testMagicBytesOverrideContentType(self):
        """A gzip file labelled as zip is still decoded"""
        msg = make_message([
            ("report.zip", "application/zip", gzip.compress(self.nice_input)),
        ])
        outcomes = dmarcextractor.extract_reports_from_message(
            msg, self.output_directory)
        self.assertEqual(outcomes[0]["status"], "extracted")

    def testForwardedReport(self):
        """Reports in forwarded messages are found"""
        inner = MIMEMultipart()
        inner["Subject"] = "Report Domain: example.com"
        part = MIMEBase("application", "zip")
        part.set_payload(make_zip([("report.xml", self.nice_input)]))
        encoders.encode_base64(part)
        part.add_header("Content-Disposition", "attachment",
                        filename="report.zip")
        inner.attach(part)
        outer = MIMEMultipart()
        outer["Subject"] = "Fwd: Report Domain: example.com"
        outer["Message-ID"] = "<forwarded@example.com>"
        outer.attach(MIMEText("See the forwarded report"))
        outer.attach(MIMEMessage(inner))
        attachments = list(
            dmarcextractor.find_report_attachments(outer.as_bytes()))
        self.assertEqual(len(attachments), 1)
        self.assertEqual(attachments[0]["filename"], "report.zip")

    def testMailPartTree(self):
        """Messages are converted to a tree of parts"""
        msg = make_message([("report.xml", "text/xml", self.nice_input)])
        parsed = dmarcextractor._message_from_content(msg)
        tree = dmarcextractor.get_mail_part_tree(parsed)
        self.assertEqual(tree["kind"], "multipart")
        self.assertEqual(tree["content_type"], "multipart/mixed")
        self.assertEqual(len(tree["parts"]), 2)
        self.assertEqual(tree["parts"][1]["kind"], "leaf")
        self.assertEqual(tree["parts"][1]["payload"], self.nice_input)

    def testMalformedMessage(self):
        """Messages that cannot be parsed are malformed"""
        for content in (b"", b"this is not an email message",
                        b"Content-Type: multipart/mixed\r\n\r\nno boundary"):
            with self.assertRaises(dmarcextractor.MalformedMessage):
                list(dmarcextractor.find_report_attachments(content))
            outcomes = dmarcextractor.extract_reports_from_message(
                content, self.output_directory, message_id="1")
            self.assertEqual(len(outcomes), 1)
            self.assertEqual(outcomes[0]["status"], "failed")
            self.assertEqual(outcomes[0]["error_kind"], "MalformedMessage")

    def testReportFilename(self):
        """Output filenames are built from the report metadata"""
        report = dmarcextractor.parse_aggregate_report_xml(self.nice_input)
        self.assertEqual(dmarcextractor.get_report_filename(report),
                         "google.com_example.com_1530403200_1530489599_"
                         "5717107811868587391.xml")
        report["report_metadata"]["org_name"] = "Mail/Ru: \"Corp\""
        report["report_metadata"]["report_id"] = "20180701.example.com@mail.ru"
        self.assertEqual(dmarcextractor.get_report_filename(report),
                         "MailRu_Corp_example.com_1530403200_1530489599_"
                         "20180701.example.com@mail.ru.xml")
        report["report_metadata"]["report_id"] = None
        self.assertEqual(dmarcextractor.get_report_filename(report),
                         "MailRu_Corp_example.com_1530403200_1530489599.xml")

    def testSaveReport(self):
        """Reports are written as is, without temporary files left over"""
        report = dmarcextractor.parse_aggregate_report_xml(self.nice_input)
        path = dmarcextractor.save_report(report, self.nice_input,
                                          self.output_directory)
        self.assertEqual(os.listdir(self.output_directory),
                         [os.path.basename(path)])
        with open(path, "rb") as f:
            self.assertEqual(f.read(), self.nice_input)
        again = dmarcextractor.save_report(report, self.nice_input,
                                           self.output_directory)
        self.assertEqual(path, again)
        self.assertEqual(len(os.listdir(self.output_directory)), 1)

    def testDestinationUnavailable(self):
        """A missing output directory is detected before any message is
        read"""
        report = dmarcextractor.parse_aggregate_report_xml(self.nice_input)
        missing = os.path.join(self.output_directory, "missing")
        with self.assertRaises(dmarcextractor.DestinationUnavailable):
            dmarcextractor.save_report(report, self.nice_input, missing)
        connection = FakeConnection({"1": b""}, fail_on="1")
        with self.assertRaises(dmarcextractor.DestinationUnavailable):
            dmarcextractor.extract_reports_from_mailbox(connection, missing)

    def testExtractReportsFromMessage(self):
        """A message with a PDF and a gzip report yields one report"""
        msg = make_message([
            ("invoice.pdf", "application/pdf", b"%PDF-1.4 not a report"),
            ("report.xml.gz", "application/gzip",
             gzip.compress(self.nice_input)),
        ])
        outcomes = dmarcextractor.extract_reports_from_message(
            msg, self.output_directory)
        self.assertEqual(len(outcomes), 1)
        outcome = outcomes[0]
        self.assertEqual(outcome["status"], "extracted")
        self.assertEqual(outcome["attachment"], "report.xml.gz")
        self.assertIn("report-1@example.net", outcome["message_id"])
        with open(outcome["output_path"], "rb") as f:
            self.assertEqual(f.read(), self.nice_input)

    def testInvalidReportIsNotSaved(self):
        """Nothing is written for a report that fails validation"""
        msg = make_message([
            ("report.xml", "text/xml",
             read_sample("invalid/missing-source-ip.xml")),
        ])
        outcomes = dmarcextractor.extract_reports_from_message(
            msg, self.output_directory, message_id=7)
        self.assertEqual(outcomes[0]["status"], "failed")
        self.assertEqual(outcomes[0]["message_id"], "7")
        self.assertEqual(outcomes[0]["error_kind"], "InvalidRecord")
        self.assertEqual(os.listdir(self.output_directory), [])

    def testExtractReportsFromMaildir(self):
        """Test a mailbox with reports, a plain message and a corrupt
        archive"""
        maildir_path = os.path.join(self.output_directory, "Maildir")
        output_directory = os.path.join(self.output_directory, "reports")
        os.mkdir(output_directory)
        maildir = mailbox.Maildir(maildir_path, create=True)
        changed = read_sample("extract_report/changed-input.xml")
        outlook = read_sample(
            "aggregate/outlook.com_example.org_1609459200_1609545600.xml")
        maildir.add(make_message(
            [("report.xml.gz", "application/gzip",
              gzip.compress(self.nice_input))],
            message_id="<1@example.net>"))
        maildir.add(make_message(
            [("report.zip", "application/zip",
              make_zip([("report.xml", outlook)]))],
            message_id="<2@example.net>"))
        maildir.add(make_message(
            [("report.xml", "text/xml", changed)],
            message_id="<3@example.net>"))
        maildir.add(make_message([], subject="Lunch?",
                                 message_id="<4@example.net>"))
        maildir.add(make_message(
            [("report.zip", "application/zip", b"PK\x03\x04garbage")],
            message_id="<5@example.net>"))

        connection = MaildirConnection(maildir_path)
        results = dmarcextractor.extract_reports_from_mailbox(
            connection, output_directory)
        self.assertEqual(results["extracted"], 3)
        self.assertEqual(results["skipped"], 1)
        self.assertEqual(results["failed"], 1)
        self.assertFalse(results["stopped"])
        self.assertEqual(results["failures"][0]["error_kind"],
                         "CorruptArchive")
        self.assertIn("5@example.net",
                      results["failures"][0]["message_id_header"])
        self.assertEqual(
            sorted(os.listdir(output_directory)),
            ["Outlook.com_example.org_1609459200_1609545600_"
             "b5e3c2a1f0d94b6c8e7a1d2c3b4a5f6e.xml",
             "google.com_example.com_1530403200_1530489599_"
             "5717107811868587391.xml",
             "google.com_example.com_1530403200_1530489599_"
             "5717107811868587392.xml"])

        def read_output():
            contents = {}
            for filename in os.listdir(output_directory):
                path = os.path.join(output_directory, filename)
                with open(path, "rb") as f:
                    contents[filename] = f.read()
            return contents

        first_run = read_output()
        self.assertIn(self.nice_input, first_run.values())
        self.assertIn(changed, first_run.values())
        self.assertIn(outlook, first_run.values())

        # A second run over the same mailbox gives identical files
        results = dmarcextractor.extract_reports_from_mailbox(
            connection, output_directory)
        self.assertEqual(results["extracted"], 3)
        self.assertEqual(read_output(), first_run)

    def testReportsWithDifferentIDs(self):
        """Reports that share an organization, domain and date range but
        not a report ID are both kept"""
        changed = read_sample("extract_report/changed-input.xml")
        connection = FakeConnection({
            "1": make_message([("report.xml", "text/xml", self.nice_input)]),
            "2": make_message([("report.xml.gz", "application/gzip",
                                gzip.compress(changed))]),
        })
        results = dmarcextractor.extract_reports_from_mailbox(
            connection, self.output_directory)
        self.assertEqual(results["extracted"], 2)
        paths = [outcome["output_path"] for outcome in results["outcomes"]]
        self.assertNotEqual(paths[0], paths[1])
        self.assertEqual(len(os.listdir(self.output_directory)), 2)
        with open(paths[0], "rb") as f:
            self.assertEqual(f.read(), self.nice_input)
        with open(paths[1], "rb") as f:
            self.assertEqual(f.read(), changed)

    def testMaildirFolders(self):
        """Maildir subfolders and missing folders"""
        maildir_path = os.path.join(self.output_directory, "Maildir")
        maildir = mailbox.Maildir(maildir_path, create=True)
        folder = maildir.add_folder("Reports")
        key = folder.add(make_message(
            [("report.xml", "text/xml", self.nice_input)]))
        connection = MaildirConnection(maildir_path)
        self.assertEqual(connection.fetch_messages("INBOX"), [])
        self.assertEqual(connection.fetch_messages("Reports"), [key])
        self.assertIn(b"Report Domain", connection.fetch_message(key))
        with self.assertRaises(MailboxProtocolError):
            connection.fetch_message("missing")
        with self.assertRaises(MailboxProtocolError):
            connection.fetch_messages("Missing")
        with self.assertRaises(dmarcextractor.MailboxFailure):
            MaildirConnection(os.path.join(self.output_directory, "nope"))

    def testMailboxFailure(self):
        """Mailbox failures end the run"""
        msg = make_message([("report.xml", "text/xml", self.nice_input)])
        connection = FakeConnection({"1": msg, "2": msg}, fail_on="2")
        with self.assertRaises(dmarcextractor.MailboxFailure):
            dmarcextractor.extract_reports_from_mailbox(
                connection, self.output_directory)

    def testProgressAndStop(self):
        """Progress is reported and a stop request ends the run"""
        msg = make_message([("report.xml", "text/xml", self.nice_input)])
        messages = dict((str(i), msg) for i in range(45))
        progress = []

        connection = FakeConnection(messages)
        results = dmarcextractor.extract_reports_from_mailbox(
            connection, self.output_directory,
            progress_callback=lambda done, total: progress.append(
                (done, total)))
        self.assertEqual(results["extracted"], 45)
        self.assertEqual(progress[-1], (45, 45))
        self.assertEqual(connection.keepalives, 2)

        connection = FakeConnection(messages)
        results = dmarcextractor.extract_reports_from_mailbox(
            connection, self.output_directory,
            should_stop=lambda: len(progress) >= 47,
            progress_callback=lambda done, total: progress.append(
                (done, total)))
        self.assertTrue(results["stopped"])
        self.assertEqual(results["extracted"], 2)

    def testFilenameSafeString(self):
        self.assertEqual(
            dmarcextractor.utils.get_filename_safe_string(
                " ..Enterprise Outlook.. "),
            "Enterprise_Outlook")
        self.assertEqual(
            dmarcextractor.utils.get_filename_safe_string("a/b\\c:d"), "abcd")
        self.assertEqual(
            len(dmarcextractor.utils.get_filename_safe_string("x" * 300)),
            100)

    def testParseEmailHeaders(self):
        msg = email.message_from_bytes(
            make_message([], subject="=?utf-8?q?Report_Domain:_example.com?="))
        headers = dmarcextractor.utils.parse_email_headers(msg)
        self.assertIn("report-1@example.net", headers["message_id"])
        self.assertEqual(headers["subject"], "Report Domain: example.com")
        self.assertIsNone(headers["date"])

    def testTimestampToHuman(self):
        self.assertEqual(
            dmarcextractor.utils.timestamp_to_human(1530403200),
            "2018-07-01 00:00:00")

    def testParseServer(self):
        parse_server = dmarcextractor.cli._parse_server
        self.assertEqual(parse_server("imap.example.com"),
                         ("imap.example.com", 993))
        self.assertEqual(parse_server("imap.example.com:143"),
                         ("imap.example.com", 143))
        self.assertEqual(parse_server("[2001:db8::1]:1993"),
                         ("2001:db8::1", 1993))
        self.assertEqual(parse_server("2001:db8::1"), ("2001:db8::1", 993))
        for server in (":993", "imap.example.com:imap",
                       "imap.example.com:70000"):
            with self.assertRaises(ValueError):
                parse_server(server)

    def testLoadConfig(self):
        config_file = os.path.join(self.output_directory, "config.ini")
        with open(config_file, "w") as f:
            f.write("[general]\n"
                    "output = /srv/dmarc\n"
                    "max_size = 1048576\n"
                    "extensions = .xml, .gz,\n"
                    "silent = true\n"
                    "[mailbox]\n"
                    "reports_folder = Reports\n"
                    "[imap]\n"
                    "host = imap.example.com\n"
                    "port = 143\n"
                    "user = dmarc@example.com\n"
                    "ssl = false\n")
        opts = dmarcextractor.cli._load_config(Namespace(), config_file)
        self.assertEqual(opts.output_path, "/srv/dmarc")
        self.assertEqual(opts.max_size, 1048576)
        self.assertEqual(opts.extensions, [".xml", ".gz"])
        self.assertTrue(opts.silent)
        self.assertEqual(opts.reports_folder, "Reports")
        self.assertEqual(opts.server, "imap.example.com")
        self.assertEqual(opts.imap_port, 143)
        self.assertFalse(opts.imap_ssl)

        with open(config_file, "w") as f:
            f.write("[general]\nmax_size = lots\n")
        with self.assertRaises(dmarcextractor.cli.ConfigError):
            dmarcextractor.cli._load_config(Namespace(), config_file)


if __name__ == "__main__":
    unittest.main(verbosity=2)
