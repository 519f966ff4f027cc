#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""A CLI for extracting DMARC aggregate reports from an IMAP mailbox"""

from argparse import Namespace, ArgumentParser
import os
from configparser import ConfigParser
from getpass import getpass
import logging
import json
import signal
import sys
from tqdm import tqdm

from dmarcextractor import (
    extract_reports_from_mailbox,
    DestinationUnavailable,
    MailboxFailure,
    __version__,
)
from dmarcextractor.constants import (
    DEFAULT_MAX_DECOMPRESSED_SIZE,
    REPORT_CONTENT_TYPES,
    REPORT_FILE_EXTENSIONS,
)
from dmarcextractor.mail import IMAPConnection
from dmarcextractor.log import logger

formatter = logging.Formatter(
    fmt="%(levelname)8s:%(filename)s:%(lineno)d:%(message)s",
    datefmt="%Y-%m-%d:%H:%M:%S",
)
handler = logging.StreamHandler()
handler.setFormatter(formatter)
logger.addHandler(handler)


class ConfigError(RuntimeError):
    """Raised when the configuration file is invalid"""


def _str_to_list(s):
    """Converts a comma separated string to a list"""
    _list = s.split(",")
    return list(filter(None, map(lambda i: i.strip(), _list)))


def _parse_server(server, default_port=993):
    """
    Splits a ``server[:port]`` string

    Args:
        server (str): A hostname, optionally followed by a colon and a port
        default_port (int): The port to use when none is given

    Returns:
        tuple: The host and the port
    """
    server = server.strip()
    if server.startswith("["):
        # [IPv6]:port
        host, _, port = server[1:].partition("]")
        port = port.lstrip(":")
    elif server.count(":") == 1:
        host, port = server.split(":")
    else:
        host, port = server, ""
    if not host:
        raise ValueError("No host name in {0}".format(server))
    if not port:
        return host, default_port
    if not port.isdigit() or not 0 < int(port) < 65536:
        raise ValueError("Invalid port in {0}".format(server))
    return host, int(port)


def _load_config(opts, config_file):
    """Updates the options with the settings in an INI configuration file"""
    config = ConfigParser()
    config.read(config_file)
    try:
        if "general" in config.sections():
            general_config = config["general"]
            if "output" in general_config:
                opts.output_path = general_config["output"]
            if "max_size" in general_config:
                opts.max_size = general_config.getint("max_size")
            if "content_types" in general_config:
                opts.content_types = _str_to_list(general_config["content_types"])
            if "extensions" in general_config:
                opts.extensions = _str_to_list(general_config["extensions"])
            if "silent" in general_config:
                opts.silent = general_config.getboolean("silent")
            if "warnings" in general_config:
                opts.warnings = general_config.getboolean("warnings")
            if "verbose" in general_config:
                opts.verbose = general_config.getboolean("verbose")
            if "debug" in general_config:
                opts.debug = general_config.getboolean("debug")
            if "log_file" in general_config:
                opts.log_file = general_config["log_file"]

        if "mailbox" in config.sections():
            mailbox_config = config["mailbox"]
            if "reports_folder" in mailbox_config:
                opts.reports_folder = mailbox_config["reports_folder"]

        if "imap" in config.sections():
            imap_config = config["imap"]
            if "host" in imap_config:
                opts.server = imap_config["host"]
            if "port" in imap_config:
                opts.imap_port = imap_config.getint("port")
            if "user" in imap_config:
                opts.account = imap_config["user"]
            if "password" in imap_config:
                opts.password = imap_config["password"]
            if "ssl" in imap_config:
                opts.imap_ssl = imap_config.getboolean("ssl")
            if "skip_certificate_verification" in imap_config:
                imap_verify = imap_config.getboolean("skip_certificate_verification")
                opts.imap_skip_certificate_verification = imap_verify
            if "timeout" in imap_config:
                opts.imap_timeout = imap_config.getfloat("timeout")
            if "max_retries" in imap_config:
                opts.imap_max_retries = imap_config.getint("max_retries")
    except ValueError as error:
        raise ConfigError("Invalid value in {0}: {1}".format(config_file, error))

    return opts


def _summary(results):
    """Converts extraction results to the summary printed at the end of a
    run"""
    failures = []
    for failure in results["failures"]:
        failures.append(
            dict(
                message_id=failure["message_id"],
                message_id_header=failure["message_id_header"],
                attachment=failure["attachment"],
                error_kind=failure["error_kind"],
                error=failure["error"],
            )
        )
    return dict(
        extracted=results["extracted"],
        skipped=results["skipped"],
        failed=results["failed"],
        stopped=results["stopped"],
        failures=failures,
    )


def _main():
    """Called when the module is executed"""

    stop_requested = []

    def request_stop(signum, frame):
        logger.warning("Stopping after the current message")
        stop_requested.append(signum)

    arg_parser = ArgumentParser(
        description="Extracts DMARC aggregate reports from an IMAP mailbox"
    )
    arg_parser.add_argument(
        "server", nargs="?", help="the IMAP server, as host or host:port"
    )
    arg_parser.add_argument(
        "account", nargs="?", help="the user name of the IMAP account"
    )
    arg_parser.add_argument(
        "output_path", nargs="?", help="an existing directory to save reports in"
    )
    arg_parser.add_argument(
        "-c", "--config-file", help="a path to a configuration file"
    )
    arg_parser.add_argument(
        "-p",
        "--password",
        help="the password for the IMAP account (prompted for if omitted)",
    )
    arg_parser.add_argument(
        "-f",
        "--reports-folder",
        help="the folder where reports can be found (default: INBOX)",
    )
    arg_parser.add_argument(
        "--max-size",
        type=int,
        help="the maximum decompressed size of a report in bytes "
        "(default: {0})".format(DEFAULT_MAX_DECOMPRESSED_SIZE),
    )
    arg_parser.add_argument(
        "--no-ssl", action="store_true", help="connect without TLS"
    )
    arg_parser.add_argument(
        "--skip-certificate-verification",
        action="store_true",
        help="do not verify the server's TLS certificate",
    )
    arg_parser.add_argument(
        "-s", "--silent", action="store_true", help="only print errors"
    )
    arg_parser.add_argument(
        "-w",
        "--warnings",
        action="store_true",
        help="print warnings in addition to errors",
    )
    arg_parser.add_argument(
        "--verbose", action="store_true", help="more verbose output"
    )
    arg_parser.add_argument(
        "--debug", action="store_true", help="print debugging information"
    )
    arg_parser.add_argument("--log-file", default=None, help="output logging to a file")
    arg_parser.add_argument("-v", "--version", action="version", version=__version__)

    args = arg_parser.parse_args()

    opts = Namespace(
        server=None,
        account=None,
        output_path=None,
        password=None,
        reports_folder="INBOX",
        max_size=DEFAULT_MAX_DECOMPRESSED_SIZE,
        content_types=list(REPORT_CONTENT_TYPES),
        extensions=list(REPORT_FILE_EXTENSIONS),
        imap_port=993,
        imap_ssl=True,
        imap_skip_certificate_verification=False,
        imap_timeout=30,
        imap_max_retries=4,
        silent=False,
        warnings=False,
        verbose=False,
        debug=False,
        log_file=None,
    )

    if args.config_file:
        abs_path = os.path.abspath(args.config_file)
        if not os.path.exists(abs_path):
            logger.error("A file does not exist at {0}".format(abs_path))
            sys.exit(1)
        try:
            _load_config(opts, abs_path)
        except ConfigError as error:
            logger.error(error.__str__())
            sys.exit(1)

    # Command line options take precedence over the configuration file
    for option in ("server", "account", "output_path", "password", "log_file"):
        if getattr(args, option) is not None:
            setattr(opts, option, getattr(args, option))
    if args.reports_folder is not None:
        opts.reports_folder = args.reports_folder
    if args.max_size is not None:
        opts.max_size = args.max_size
    if args.no_ssl:
        opts.imap_ssl = False
    if args.skip_certificate_verification:
        opts.imap_skip_certificate_verification = True
    for option in ("silent", "warnings", "verbose", "debug"):
        if getattr(args, option):
            setattr(opts, option, True)

    logger.setLevel(logging.ERROR)

    if opts.warnings:
        logger.setLevel(logging.WARNING)
    if opts.verbose:
        logger.setLevel(logging.INFO)
    if opts.debug:
        logger.setLevel(logging.DEBUG)
    if opts.log_file:
        try:
            fh = logging.FileHandler(opts.log_file, "a")
            formatter = logging.Formatter(
                "%(asctime)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
            )
            fh.setFormatter(formatter)
            logger.addHandler(fh)
        except Exception as error:
            logger.warning("Unable to write to log file: {}".format(error))

    if opts.server is None or opts.account is None or opts.output_path is None:
        arg_parser.print_usage(sys.stderr)
        logger.error("You must supply a server, an account and an output path")
        sys.exit(1)

    if opts.max_size <= 0:
        logger.error("The maximum size must be a positive number of bytes")
        sys.exit(1)

    try:
        host, port = _parse_server(opts.server, default_port=opts.imap_port)
    except ValueError as error:
        logger.error(error.__str__())
        sys.exit(1)

    output_path = os.path.expanduser(opts.output_path)
    if not os.path.isdir(output_path):
        logger.error("{0} is not an existing directory".format(output_path))
        sys.exit(1)

    if opts.password is None:
        opts.password = getpass("Password: ")

    logger.info("Starting dmarcextractor")

    verify = True
    if opts.imap_skip_certificate_verification:
        logger.debug("Skipping IMAP certificate verification")
        verify = False

    try:
        connection = IMAPConnection(
            host=host,
            port=port,
            ssl=opts.imap_ssl,
            verify=verify,
            timeout=opts.imap_timeout,
            max_retries=opts.imap_max_retries,
            user=opts.account,
            password=opts.password,
        )
    except MailboxFailure as error:
        logger.critical("IMAP Error: {0}".format(error.__str__()))
        sys.exit(1)

    pbar = tqdm(total=0, unit="message", disable=opts.silent)

    def update_progress(processed, total):
        pbar.total = total
        pbar.update(processed - pbar.n)

    signal.signal(signal.SIGTERM, request_stop)

    try:
        results = extract_reports_from_mailbox(
            connection,
            output_path,
            reports_folder=opts.reports_folder,
            max_size=opts.max_size,
            content_types=opts.content_types,
            extensions=opts.extensions,
            progress_callback=update_progress,
            should_stop=lambda: len(stop_requested) > 0,
        )
    except DestinationUnavailable as error:
        logger.critical(error.__str__())
        sys.exit(1)
    except MailboxFailure as error:
        logger.critical("Mailbox Error: {0}".format(error.__str__()))
        sys.exit(1)
    finally:
        pbar.close()
        connection.logout()

    for failure in results["failures"]:
        logger.error(
            "Message {0}: {1}: {2}".format(
                failure["message_id"], failure["error_kind"], failure["error"]
            )
        )

    if not opts.silent:
        print(json.dumps(_summary(results), ensure_ascii=False, indent=2))


if __name__ == "__main__":
    _main()
