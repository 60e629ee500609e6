#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Checks if an IP address is authorized to send mail for a domain"""

from __future__ import annotations

import ipaddress
import logging
import platform
from argparse import ArgumentParser
from typing import Optional

import timeout_decorator

from checkspf import (
    __version__,
    check_host,
    output_to_file,
    results_to_csv,
    results_to_json,
)
from checkspf._constants import (
    DEFAULT_DNS_TIMEOUT,
    DEFAULT_DNS_TIMEOUT_RETRIES,
    DEFAULT_HELO,
    SPF_DEADLINE_SECONDS,
)
from checkspf.utils import normalize_domain

"""Copyright 2019-2023 Sean Whalen

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

   https://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License."""


class SPFDeadlineExceeded(Exception):
    """Raised when an SPF evaluation does not finish before its deadline"""


def _get_timeout_method() -> bool:
    """
    Determine the best timeout method based on platform and environment.

    Returns:
        bool: True to use signals, False to use multiprocessing
    """
    if platform.system() == "Darwin":
        return True

    # Signals are not available on Windows
    if platform.system() == "Windows":
        return False

    # Signals are only delivered to the main thread
    import threading

    if threading.current_thread() is not threading.main_thread():
        return False

    return True


def check_host_with_deadline(
    ip: str,
    domain: str,
    mail_from: Optional[str] = None,
    *,
    deadline: float = SPF_DEADLINE_SECONDS,
    **kwargs,
) -> dict:
    """
    Runs :func:`checkspf.check_host` under a wall-clock deadline

    When the deadline passes the evaluation is abandoned and no verdict is
    returned, so the mail transaction can continue without SPF.

    Args:
        ip (str): The connecting IPv4 or IPv6 address
        domain (str): The HELO or envelope-from domain
        mail_from (str): The envelope sender
        deadline (float): Number of seconds the whole evaluation may take
        **kwargs: Keyword arguments passed to :func:`checkspf.check_host`

    Returns:
        dict: The :func:`checkspf.check_host` results, or the same keys with
        a ``None`` ``result`` and an ``error`` message when the deadline
        passed
    """
    evaluate = timeout_decorator.timeout(
        deadline,
        timeout_exception=SPFDeadlineExceeded,
        exception_message=f"SPF evaluation exceeded the {deadline} second deadline",
        use_signals=_get_timeout_method(),
    )(check_host)
    try:
        return evaluate(ip, domain, mail_from, **kwargs)
    except SPFDeadlineExceeded as error:
        logging.warning(f"{domain}: {error}")
        domain = normalize_domain(domain)
        return {
            "ip": str(ipaddress.ip_address(ip)),
            "domain": domain,
            "mail_from": mail_from.lower() if mail_from else f"postmaster@{domain}",
            "helo": kwargs.get("helo", DEFAULT_HELO),
            "result": None,
            "record": None,
            "dns_lookups": None,
            "error": str(error),
        }


def _main():
    """Called when the module in executed"""
    arg_parser = ArgumentParser(description=__doc__)
    arg_parser.add_argument("ip", help="the connecting IPv4 or IPv6 address")
    arg_parser.add_argument("domain", help="the HELO or envelope-from domain")
    arg_parser.add_argument(
        "-m",
        "--mail-from",
        help="the envelope sender (default postmaster@<domain>)",
    )
    arg_parser.add_argument(
        "-H",
        "--helo",
        default=DEFAULT_HELO,
        help=f"the HELO/EHLO string (default {DEFAULT_HELO})",
    )
    arg_parser.add_argument(
        "-f",
        "--format",
        default="json",
        help="specify JSON or CSV screen output format",
    )
    arg_parser.add_argument(
        "-o",
        "--output",
        nargs="+",
        help="one or more file paths to output to "
        "(must end in .json or .csv) "
        "(silences screen output)",
    )
    arg_parser.add_argument(
        "-n", "--nameserver", nargs="+", help="nameservers to query"
    )
    arg_parser.add_argument(
        "-t",
        "--timeout",
        help="number of seconds to wait for an answer from DNS "
        f"(default {DEFAULT_DNS_TIMEOUT})",
        type=float,
        default=DEFAULT_DNS_TIMEOUT,
    )
    arg_parser.add_argument(
        "--timeout-retries",
        help="number of times to reattempt a query after a timeout "
        f"(default {DEFAULT_DNS_TIMEOUT_RETRIES})",
        type=int,
        default=DEFAULT_DNS_TIMEOUT_RETRIES,
    )
    arg_parser.add_argument(
        "-d",
        "--deadline",
        help="number of seconds the whole evaluation may take "
        f"(default {SPF_DEADLINE_SECONDS})",
        type=float,
        default=SPF_DEADLINE_SECONDS,
    )
    arg_parser.add_argument("-v", "--version", action="version", version=__version__)
    arg_parser.add_argument(
        "--debug", action="store_true", help="enable debugging output"
    )

    args = arg_parser.parse_args()

    logging_format = "%(asctime)s - %(levelname)s: %(message)s"
    logging.basicConfig(level=logging.WARNING, format=logging_format)

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)
        logging.debug("Debug output enabled")

    try:
        results = check_host_with_deadline(
            args.ip,
            args.domain,
            args.mail_from,
            deadline=args.deadline,
            helo=args.helo,
            nameservers=args.nameserver,
            timeout=args.timeout,
            timeout_retries=args.timeout_retries,
        )
    except ValueError as error:
        arg_parser.error(str(error))

    if args.output is None:
        if args.format.lower() == "json":
            results = results_to_json(results)
        elif args.format.lower() == "csv":
            results = results_to_csv(results)
        print(results)
    else:
        for path in args.output:
            json_path = path.lower().endswith(".json")
            csv_path = path.lower().endswith(".csv")

            if not json_path and not csv_path:
                logging.error(f"Output path {path} must end in .json or .csv")
            else:
                if json_path:
                    output_to_file(path, results_to_json(results))
                elif csv_path:
                    output_to_file(path, results_to_csv(results))


if __name__ == "__main__":
    _main()
