# -*- coding: utf-8 -*-
"""DNS utility functions"""

from __future__ import annotations

import ipaddress
import logging
import re
import unicodedata
from typing import Optional, TypedDict, Union
from collections.abc import Sequence

import dns.exception
import dns.resolver
import dns.reversename
from dns.nameserver import Nameserver

from checkspf._constants import DEFAULT_DNS_TIMEOUT, DEFAULT_DNS_TIMEOUT_RETRIES

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

logger = logging.getLogger(__name__)

ZERO_WIDTH_RE = re.compile(r"[\u200B-\u200D\uFEFF]")  # includes ZWSP, ZWNJ, ZWJ, BOM

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


class MXHost(TypedDict):
    hostname: str
    preference: int


class DNSException(Exception):
    """Raised when a general DNS error occurs"""

    def __init__(self, error):
        if isinstance(error, dns.exception.Timeout) and "timeout" in error.kwargs:
            error.kwargs["timeout"] = round(error.kwargs["timeout"], 1)
        self.error = error
        Exception.__init__(self, str(error))


class DNSExceptionNXDOMAIN(DNSException):
    """Raised when a NXDOMAIN DNS error (RCODE:3) occurs"""


def normalize_domain(domain: str) -> str:
    """
    Normalize an input domain by removing zero-width characters and lowering it

    Args:
        domain (str): A domain or subdomain

    Returns:
        str: A normalized domain
    """
    domain = unicodedata.normalize("NFC", domain)
    domain = ZERO_WIDTH_RE.sub("", domain)
    return domain.lower().rstrip(".")


def query_dns(
    domain: str,
    record_type: str,
    *,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = DEFAULT_DNS_TIMEOUT,
    timeout_retries: int = DEFAULT_DNS_TIMEOUT_RETRIES,
    _attempt: int = 0,
) -> list[str]:
    """
    Queries DNS

    Answers are never cached; every call is a fresh round trip.

    Args:
        domain (str): The domain or subdomain to query about
        record_type (str): The record type to query for
        nameservers (list): A list of one or more nameservers to use
        resolver (dns.resolver.Resolver): A resolver object to use for DNS
                                          requests
        timeout (float): Sets the DNS timeout in seconds
        timeout_retries (int): The number of times to reattempt a query after a timeout

    Returns:
        list: A list of answers
    """
    domain = normalize_domain(domain)
    record_type = record_type.upper()
    if not resolver:
        resolver = dns.resolver.Resolver()
        timeout = float(timeout)
        if nameservers is not None:
            resolver.nameservers = nameservers
        resolver.timeout = timeout
        resolver.lifetime = timeout
    try:
        answers = resolver.resolve(domain, record_type, lifetime=timeout)
    except dns.resolver.LifetimeTimeout as e:
        _attempt += 1
        if _attempt > timeout_retries:
            raise e
        return query_dns(
            domain,
            record_type,
            nameservers=nameservers,
            resolver=resolver,
            timeout=timeout,
            timeout_retries=timeout_retries,
            _attempt=_attempt,
        )
    if record_type == "TXT":
        # A single TXT record may be split into several character-strings
        records = []
        for record in map(lambda r: b"".join(r.strings), answers):
            try:
                records.append(record.decode())
            except UnicodeDecodeError:
                logger.debug(f"Discarding undecodable TXT record on {domain}")
    else:
        records = list(
            map(
                lambda r: r.to_text().rstrip("."),
                answers,
            )
        )

    return records


def get_txt_records(
    domain: str,
    *,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = DEFAULT_DNS_TIMEOUT,
    timeout_retries: int = DEFAULT_DNS_TIMEOUT_RETRIES,
) -> list[str]:
    """
    Queries DNS for TXT records

    Args:
        domain (str): A domain name
        nameservers (list): A list of nameservers to query
        resolver (dns.resolver.Resolver): A resolver object to use for DNS
                                          requests
        timeout (float): number of seconds to wait for an answer from DNS
        timeout_retries (int): The number of times to reattempt a query after a timeout

    Returns:
        list: A list of TXT records, empty if the domain has none

    Raises:
        :exc:`checkspf.utils.DNSExceptionNXDOMAIN`
        :exc:`checkspf.utils.DNSException`

    """
    try:
        logger.debug(f"Getting TXT records for {domain}")
        records = query_dns(
            domain,
            "TXT",
            nameservers=nameservers,
            resolver=resolver,
            timeout=timeout,
            timeout_retries=timeout_retries,
        )
    except dns.resolver.NXDOMAIN:
        raise DNSExceptionNXDOMAIN("The domain does not exist.")
    except dns.resolver.NoAnswer:
        return []
    except Exception as error:
        raise DNSException(error)

    return records


def get_a_records(
    domain: str,
    ip_version: int = 4,
    *,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = DEFAULT_DNS_TIMEOUT,
    timeout_retries: int = DEFAULT_DNS_TIMEOUT_RETRIES,
) -> list[str]:
    """
    Queries DNS for the A or AAAA records of a domain

    Args:
        domain (str): A domain name
        ip_version (int): 4 to query A records, 6 to query AAAA records
        nameservers (list): A list of nameservers to query
        resolver (dns.resolver.Resolver): A resolver object to use for DNS
                                          requests
        timeout (float): number of seconds to wait for an answer from DNS
        timeout_retries (int): The number of times to reattempt a query after a timeout

    Returns:
        list: A list of addresses, empty if the domain has none

    Raises:
        :exc:`checkspf.utils.DNSExceptionNXDOMAIN`
        :exc:`checkspf.utils.DNSException`
    """
    qt = "AAAA" if ip_version == 6 else "A"
    try:
        logger.debug(f"Getting {qt} records for {domain}")
        addresses = query_dns(
            domain,
            qt,
            nameservers=nameservers,
            resolver=resolver,
            timeout=timeout,
            timeout_retries=timeout_retries,
        )
    except dns.resolver.NXDOMAIN:
        raise DNSExceptionNXDOMAIN("The domain does not exist.")
    except dns.resolver.NoAnswer:
        return []
    except Exception as error:
        raise DNSException(error)

    return addresses


def get_reverse_dns(
    ip_address: Union[str, IPAddress],
    *,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = DEFAULT_DNS_TIMEOUT,
    timeout_retries: int = DEFAULT_DNS_TIMEOUT_RETRIES,
) -> list[str]:
    """
    Queries for an IP addresses reverse DNS hostname(s)

    Args:
        ip_address (str): An IPv4 or IPv6 address
        nameservers (list): A list of nameservers to query
        resolver (dns.resolver.Resolver): A resolver object to use for DNS
                                          requests
        timeout (float): number of seconds to wait for an answer from DNS
        timeout_retries (int): The number of times to reattempt a query after a timeout

    Returns:
        list: A list of reverse DNS hostnames

    Raises:
        :exc:`checkspf.utils.DNSException`

    """
    try:
        name = str(dns.reversename.from_address(str(ip_address)))
        logger.debug(f"Getting PTR records for {ip_address}")
        hostnames = query_dns(
            name,
            "PTR",
            nameservers=nameservers,
            resolver=resolver,
            timeout=timeout,
            timeout_retries=timeout_retries,
        )
    except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
        return []
    except Exception as error:
        raise DNSException(error)

    return hostnames


def get_mx_records(
    domain: str,
    *,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = DEFAULT_DNS_TIMEOUT,
    timeout_retries: int = DEFAULT_DNS_TIMEOUT_RETRIES,
) -> list[MXHost]:
    """
    Queries DNS for a list of Mail Exchange hosts

    Args:
        domain (str): A domain name
        nameservers (list): A list of nameservers to query
        resolver (dns.resolver.Resolver): A resolver object to use for DNS
                                          requests
        timeout (float): number of seconds to wait for an answer from DNS
        timeout_retries (int): The number of times to reattempt a query after a timeout

    Returns:
        list: A list of ``dicts``; each containing a ``preference``
                        integer and a ``hostname``

    Raises:
        :exc:`checkspf.utils.DNSExceptionNXDOMAIN`
        :exc:`checkspf.utils.DNSException`

    """
    hosts = []
    try:
        logger.debug(f"Checking for MX records on {domain}")
        answers = query_dns(
            domain,
            "MX",
            nameservers=nameservers,
            resolver=resolver,
            timeout=timeout,
            timeout_retries=timeout_retries,
        )
        if answers == ["0 "]:
            logger.debug('"No Service" MX record found')
            return []
        for record in answers:
            record = record.split(" ")
            preference = int(record[0])
            hostname = record[1].rstrip(".").strip().lower()
            hosts.append({"preference": preference, "hostname": hostname})
        hosts = sorted(hosts, key=lambda h: (h["preference"], h["hostname"]))
    except dns.resolver.NXDOMAIN:
        raise DNSExceptionNXDOMAIN("The domain does not exist.")
    except dns.resolver.NoAnswer:
        pass
    except Exception as error:
        raise DNSException(error)
    return hosts


def is_ip_address(value: str) -> bool:
    """
    Checks if a string is a literal IPv4 or IPv6 address

    Args:
        value (str): A hostname or address

    Returns:
        bool: True if the value parses as an IP address
    """
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True
