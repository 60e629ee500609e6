# -*- coding: utf-8 -*-
"""Sender Policy Framework (SPF) check_host() evaluation"""

from __future__ import annotations

import ipaddress
import logging
import re
from enum import Enum
from typing import Optional, TypedDict, Union
from collections.abc import Sequence

import dns.resolver
from dns.nameserver import Nameserver
import pyleri

from checkspf._constants import (
    DEFAULT_DNS_TIMEOUT,
    DEFAULT_DNS_TIMEOUT_RETRIES,
    DEFAULT_HELO,
    DNS_LOOKUP_LIMIT,
    MX_LOOKUP_LIMIT,
    PTR_LOOKUP_LIMIT,
    SYNTAX_ERROR_MARKER,
    UNKNOWN_PTR_DOMAIN,
)
from checkspf.utils import (
    DNSException,
    DNSExceptionNXDOMAIN,
    IPAddress,
    get_a_records,
    get_mx_records,
    get_reverse_dns,
    get_txt_records,
    is_ip_address,
    normalize_domain,
)

"""Copyright 2019-2025 Sean Whalen

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

SPF_RECORD_REGEX = re.compile(r"^v=spf1($|\s.+)", re.IGNORECASE | re.DOTALL)
WHITESPACE_REGEX = re.compile(r"\s+")

SPF_MECHANISM_REGEX_STRING = (
    r"([+\-~?])?"
    r"(all|a|mx|ptr|ip4|ip6|include|exists)"
    r"(:[^/ ]+)?"
    r"(?:/(\d+))?"
    r"(?://(\d+))?"
)
SPF_MODIFIER_REGEX_STRING = r"([^ =]+)=([a-z0-9:/._\-]+)"

SPF_MECHANISM_REGEX = re.compile(SPF_MECHANISM_REGEX_STRING)
SPF_MODIFIER_REGEX = re.compile(SPF_MODIFIER_REGEX_STRING)

# A '%' must start a macro or one of the %%, %- escapes. '%+' is accepted
# as well, which RFC 7208 does not define.
BARE_PERCENT_REGEX = re.compile(r"%(?![{%+\-])")
MACRO_REGEX = re.compile(r"%\{([slodipvh])(\d*)(r?)([-.+,/_=]?)\}")


class Result(Enum):
    """The terminal outcome of an SPF evaluation"""

    NONE = "None"
    PASS = "Pass"
    FAIL = "Fail"
    SOFTFAIL = "SoftFail"
    NEUTRAL = "Neutral"
    TEMPERROR = "TempError"
    PERMERROR = "PermError"

    def __str__(self):
        return self.value


class MechanismKind(Enum):
    ALL = "all"
    A = "a"
    MX = "mx"
    PTR = "ptr"
    IP4 = "ip4"
    IP6 = "ip6"
    INCLUDE = "include"
    EXISTS = "exists"


class ModifierKind(Enum):
    REDIRECT = "redirect"
    EXP = "exp"
    VERSION = "v"
    UNKNOWN = "unknown"


spf_qualifiers: dict[str, Result] = {
    "": Result.PASS,
    "?": Result.NEUTRAL,
    "+": Result.PASS,
    "-": Result.FAIL,
    "~": Result.SOFTFAIL,
}

_modifier_kinds: dict[str, ModifierKind] = {
    "redirect": ModifierKind.REDIRECT,
    "exp": ModifierKind.EXP,
    "v": ModifierKind.VERSION,
}

# Mechanisms that take a domain-spec, and whether one is required
_domain_spec_mechanisms: dict[MechanismKind, bool] = {
    MechanismKind.A: False,
    MechanismKind.MX: False,
    MechanismKind.PTR: False,
    MechanismKind.INCLUDE: True,
    MechanismKind.EXISTS: True,
}


class SPFError(Exception):
    """Raised when an SPF evaluation cannot continue"""

    result = Result.PERMERROR

    def __init__(self, msg: str, data: Optional[dict] = None):
        """
        Args:
            msg (str): The error message
            data (dict): A dictionary of data to include in the output
        """
        self.data = data
        Exception.__init__(self, msg)


class SPFRecordNotFound(SPFError):
    """Raised when an SPF record could not be found"""

    result = Result.NONE

    def __init__(self, error: Union[Exception, str], domain: str):
        self.error = error
        self.domain = domain
        SPFError.__init__(self, str(error))

    def __str__(self):
        return str(self.error)


class SPFTempError(SPFError):
    """Raised when a transient DNS failure prevents fetching an SPF record"""

    result = Result.TEMPERROR


class MultipleSPFRTXTRecords(SPFError):
    """Raised when multiple TXT spf1 records are found"""


class SPFSyntaxError(SPFError):
    """Raised when an SPF syntax error is found"""


class SPFTooManyDNSLookups(SPFError):
    """Raised when an SPF evaluation requires too many DNS lookups (10 max)"""

    def __init__(self, *args, **kwargs):
        data = {"dns_lookups": kwargs["dns_lookups"]}
        SPFError.__init__(self, args[0], data=data)


class _SPFTermGrammar(pyleri.Grammar):
    """Defines Pyleri grammar for a single SPF term"""

    mechanism = pyleri.Regex(SPF_MECHANISM_REGEX_STRING)
    modifier = pyleri.Regex(SPF_MODIFIER_REGEX_STRING)

    START = pyleri.Choice(mechanism, modifier)


class SPFMechanism(TypedDict):
    qualifier: Result
    kind: MechanismKind
    value: Optional[str]
    domain: Optional[str]
    cidr4: Optional[int]
    cidr6: Optional[int]
    network: Optional[Union[ipaddress.IPv4Network, ipaddress.IPv6Network]]


class SPFModifier(TypedDict):
    kind: ModifierKind
    name: str
    value: str


class ParsedSPFRecord(TypedDict):
    mechanisms: list[SPFMechanism]
    modifiers: list[SPFModifier]


class SPFCheckResults(TypedDict):
    ip: str
    domain: str
    mail_from: str
    helo: str
    result: str
    record: Optional[str]
    dns_lookups: int


class LookupBudget:
    """
    The DNS lookup counter and visited-domain set of one evaluation chain

    A single instance is created by each top-level ``check_host()`` call and
    handed by reference to every ``include`` and ``redirect`` recursion, so
    the whole chain shares one limit and one loop guard.
    """

    def __init__(self, limit: int = DNS_LOOKUP_LIMIT):
        self.limit = limit
        self.count = 0
        self.visited: set[str] = set()

    @property
    def exhausted(self) -> bool:
        return self.count > self.limit

    def consume(self) -> None:
        self.count += 1

    def enter(self, domain: str) -> bool:
        """
        Marks a domain as entered by ``include`` or ``redirect``

        Args:
            domain (str): The normalized target domain

        Returns:
            bool: False if the domain was already entered in this chain
        """
        if domain in self.visited:
            return False
        self.count += 1
        self.visited.add(domain)
        return True


class EvaluationContext:
    """State for the evaluation of one domain's SPF record"""

    def __init__(
        self,
        ip: IPAddress,
        domain: str,
        mail_from: str,
        helo: str,
        budget: LookupBudget,
    ):
        self.ip = ip
        self.domain = domain
        self.mail_from = mail_from
        self.helo = helo
        self.budget = budget
        self.spf_record: Optional[str] = None

    @property
    def ip_version(self) -> int:
        return self.ip.version


def normalize_spf_record(record: str) -> str:
    """Collapses runs of whitespace and lowercases an SPF record"""
    return WHITESPACE_REGEX.sub(" ", record).strip().lower()


def query_spf_record(
    domain: str,
    *,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = DEFAULT_DNS_TIMEOUT,
    timeout_retries: int = DEFAULT_DNS_TIMEOUT_RETRIES,
) -> str:
    """
    Queries DNS for an SPF record

    Args:
        domain (str): A domain name
        nameservers (list): A list of nameservers to query
        resolver (dns.resolver.Resolver): A resolver object to use for DNS requests
        timeout (float): number of seconds to wait for an answer from DNS
        timeout_retries (int): The number of times to reattempt a query after a timeout

    Returns:
        str: The normalized SPF record

    Raises:
        :exc:`checkspf.spf.SPFRecordNotFound`
        :exc:`checkspf.spf.MultipleSPFRTXTRecords`
        :exc:`checkspf.spf.SPFTempError`
    """
    domain = normalize_domain(domain)
    logger.debug(f"Checking for a SPF record on {domain}")
    try:
        answers = get_txt_records(
            domain,
            nameservers=nameservers,
            resolver=resolver,
            timeout=timeout,
            timeout_retries=timeout_retries,
        )
    except DNSExceptionNXDOMAIN as error:
        raise SPFRecordNotFound(error, domain)
    except DNSException as error:
        raise SPFTempError(f"Error looking up TXT records for {domain}: {error}")

    spf_txt_records = []
    for record in answers:
        # https://datatracker.ietf.org/doc/html/rfc7208#section-4.5
        #
        # The version section is terminated by either an SP character or the
        # end of the record, so "v=spf10" is discarded.
        if not SPF_RECORD_REGEX.match(record):
            logger.debug(f"Discarding TXT record: {record}")
            continue
        if record in spf_txt_records:
            continue
        logger.debug(f"Found SPF record for domain {domain}: {record}")
        spf_txt_records.append(record)

    if len(spf_txt_records) > 1:
        logger.warning(f"{domain} has {len(spf_txt_records)} SPF TXT records")
        raise MultipleSPFRTXTRecords(f"{domain} has multiple SPF TXT records")
    if len(spf_txt_records) == 0:
        raise SPFRecordNotFound("An SPF record does not exist.", domain)

    return normalize_spf_record(spf_txt_records[0])


def _raise_term_syntax_error(
    term: str,
    pos: int,
    domain: str,
    message: str,
) -> None:
    marked_term = term[:pos] + SYNTAX_ERROR_MARKER + term[pos:]
    raise SPFSyntaxError(
        f"{domain}: {message} at position {pos} "
        f"(marked with {SYNTAX_ERROR_MARKER}) in: {marked_term}"
    )


def _validate_macro_string(value: str, domain: str) -> None:
    """
    Validates the macro syntax of a mechanism domain-spec

    Only bare ``%`` signs are rejected; a ``%{...}`` that is not a known
    macro is kept as literal text by :meth:`SPF.expand_macros`.

    Raises:
        :exc:`checkspf.spf.SPFSyntaxError`
    """
    bare = BARE_PERCENT_REGEX.search(value)
    if bare:
        _raise_term_syntax_error(value, bare.start(), domain, "Invalid % escape")


class SPF:
    """
    Evaluates SPF policies (RFC 7208 ``check_host()``)

    Set ``helo`` before calling :meth:`check_host`; it is used by the ``%{h}``
    macro. After an evaluation, ``spf_record`` holds the policy found for the
    requested domain and ``dns_lookups`` the number of lookups it used.
    """

    def __init__(
        self,
        helo: str = DEFAULT_HELO,
        *,
        logger: Optional[logging.Logger] = None,
        nameservers: Optional[Sequence[str | Nameserver]] = None,
        resolver: Optional[dns.resolver.Resolver] = None,
        timeout: float = DEFAULT_DNS_TIMEOUT,
        timeout_retries: int = DEFAULT_DNS_TIMEOUT_RETRIES,
    ):
        self.helo = helo
        self.spf_record: Optional[str] = None
        self.dns_lookups = 0
        self.logger = logger or logging.getLogger(__name__)
        self._grammar = _SPFTermGrammar()
        self._dns_options = {
            "nameservers": nameservers,
            "resolver": resolver,
            "timeout": timeout,
            "timeout_retries": timeout_retries,
        }

    def check_host(
        self,
        ip: Union[str, IPAddress],
        domain: str,
        mail_from: Optional[str] = None,
    ) -> Result:
        """
        Checks if an IP address is authorized to send mail for a domain

        Args:
            ip: The connecting IPv4 or IPv6 address
            domain (str): The HELO or envelope-from domain
            mail_from (str): The envelope sender; defaults to
                             ``postmaster@<domain>``

        Returns:
            Result: The SPF result

        Raises:
            ValueError: ``ip`` is not a valid IP address
        """
        if not isinstance(ip, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
            ip = ipaddress.ip_address(ip)
        budget = LookupBudget()
        context = self._new_context(ip, domain, mail_from, budget)
        self.spf_record = None
        result = self._check_host(context)
        self.spf_record = context.spf_record
        self.dns_lookups = budget.count
        self.logger.debug(
            f"check_host ip={ip} domain={context.domain} result={result} "
            f"dns_lookups={budget.count}"
        )
        return result

    def _new_context(
        self,
        ip: IPAddress,
        domain: str,
        mail_from: Optional[str],
        budget: LookupBudget,
    ) -> EvaluationContext:
        domain = normalize_domain(domain)
        if mail_from:
            mail_from = mail_from.lower()
        else:
            mail_from = f"postmaster@{domain}"
        return EvaluationContext(ip, domain, mail_from, self.helo or DEFAULT_HELO, budget)

    def _recurse(self, context: EvaluationContext, domain: str) -> Result:
        return self._check_host(
            self._new_context(context.ip, domain, context.mail_from, context.budget)
        )

    def _check_host(self, context: EvaluationContext) -> Result:
        self.logger.debug(
            f"ip={context.ip} domain={context.domain} mail_from={context.mail_from}"
        )
        try:
            context.spf_record = query_spf_record(context.domain, **self._dns_options)
            parsed = self.parse_spf_record(context.spf_record, context)
            self.logger.debug(f"SPF record for '{context.domain}' validated OK")
            return self._evaluate(parsed, context)
        except SPFError as error:
            details = f" {error.data}" if error.data else ""
            self.logger.debug(f"{context.domain}: {error} ({error.result}){details}")
            return error.result

    def _evaluate(
        self, parsed: ParsedSPFRecord, context: EvaluationContext
    ) -> Result:
        for mechanism in parsed["mechanisms"]:
            self.logger.debug(
                f"running mechanism: {mechanism['kind'].value} "
                f"args={mechanism['value']} domain={context.domain}"
            )
            self._check_lookup_limit(context)
            evaluator = self._MECHANISM_EVALUATORS[mechanism["kind"]]
            result = evaluator(self, mechanism, context)
            if result is not Result.NONE:
                return result

        for modifier in parsed["modifiers"]:
            self.logger.debug(
                f"running modifier: {modifier['name']} "
                f"args={modifier['value']} domain={context.domain}"
            )
            if modifier["kind"] is ModifierKind.REDIRECT:
                self._check_lookup_limit(context)
            handler = self._MODIFIER_HANDLERS[modifier["kind"]]
            result = handler(self, modifier, context)
            if result is not None:
                return result

        return Result.NEUTRAL

    def _check_lookup_limit(self, context: EvaluationContext) -> None:
        if context.budget.exhausted:
            self.logger.debug("lookup limit reached")
            raise SPFTooManyDNSLookups(
                f"Evaluating the SPF record requires more than "
                f"{context.budget.limit} DNS lookups (RFC 7208 § 4.6.4)",
                dns_lookups=context.budget.count,
            )

    def parse_spf_record(
        self, record: str, context: EvaluationContext
    ) -> ParsedSPFRecord:
        """
        Parses a normalized SPF record and expands macros in its arguments

        Every term is validated before anything is evaluated.

        Args:
            record (str): A normalized SPF record
            context (EvaluationContext): Supplies the macro values

        Returns:
            dict: A ``dict`` with ``mechanisms`` and ``modifiers`` lists in
            record order

        Raises:
            :exc:`checkspf.spf.SPFSyntaxError`
        """
        parsed: ParsedSPFRecord = {"mechanisms": [], "modifiers": []}
        for term in record.split(" "):
            if not term:
                continue
            parsed_term = self._grammar.parse(term)
            if not parsed_term.is_valid:
                expecting = " or ".join(
                    map(lambda x: str(x).strip('"'), parsed_term.expecting)
                )
                self.logger.debug(f"syntax error: {term}")
                _raise_term_syntax_error(
                    term,
                    parsed_term.pos,
                    context.domain,
                    f"Expected {expecting}",
                )
            match = SPF_MECHANISM_REGEX.fullmatch(term)
            if match:
                mechanism = self._parse_mechanism(term, match, context)
                self.logger.debug(f"found mechanism: {term}")
                parsed["mechanisms"].append(mechanism)
                continue
            match = SPF_MODIFIER_REGEX.fullmatch(term)
            if match is None:
                _raise_term_syntax_error(term, 0, context.domain, "Invalid term")
            name, value = match.groups()
            kind = _modifier_kinds.get(name, ModifierKind.UNKNOWN)
            self.logger.debug(f"found modifier: {term}")
            parsed["modifiers"].append({"kind": kind, "name": name, "value": value})

        return parsed

    def _parse_mechanism(
        self, term: str, match: re.Match, context: EvaluationContext
    ) -> SPFMechanism:
        qualifier, name, spec, cidr4, cidr6 = match.groups()
        kind = MechanismKind(name)
        mechanism: SPFMechanism = {
            "qualifier": spf_qualifiers[qualifier or ""],
            "kind": kind,
            "value": None,
            "domain": None,
            "cidr4": None,
            "cidr6": None,
            "network": None,
        }
        args = term[match.start(3) if spec else match.end(2):]
        if args:
            mechanism["value"] = args

        if kind is MechanismKind.ALL:
            if args:
                _raise_term_syntax_error(
                    term, match.end(2), context.domain, "Unexpected argument"
                )
            return mechanism

        if kind in (MechanismKind.IP4, MechanismKind.IP6):
            if spec is None or cidr6 is not None:
                _raise_term_syntax_error(
                    term, match.end(2), context.domain, "Expected an IP address"
                )
            value = spec[1:] if cidr4 is None else f"{spec[1:]}/{cidr4}"
            try:
                mechanism["network"] = ipaddress.ip_network(value, strict=False)
            except ValueError:
                self.logger.debug(f"invalid IP address: {value}")
                _raise_term_syntax_error(
                    term, match.start(3), context.domain, f"Invalid IP value {value}"
                )
            return mechanism

        if spec is None and _domain_spec_mechanisms[kind]:
            _raise_term_syntax_error(
                term, match.end(2), context.domain, "Expected a domain"
            )
        if kind not in (MechanismKind.A, MechanismKind.MX) and (
            cidr4 is not None or cidr6 is not None
        ):
            _raise_term_syntax_error(
                term, term.find("/"), context.domain, "Unexpected CIDR length"
            )
        if cidr4 is not None:
            if int(cidr4) > 32:
                _raise_term_syntax_error(
                    term, term.find("/"), context.domain, "Invalid IPv4 CIDR length"
                )
            mechanism["cidr4"] = int(cidr4)
        if cidr6 is not None:
            if int(cidr6) > 128:
                _raise_term_syntax_error(
                    term, term.rfind("/"), context.domain, "Invalid IPv6 CIDR length"
                )
            mechanism["cidr6"] = int(cidr6)
        if spec is not None:
            domain_spec = spec[1:]
            _validate_macro_string(domain_spec, context.domain)
            mechanism["domain"] = self.expand_macros(domain_spec, context)
            mechanism["value"] = mechanism["value"].replace(
                domain_spec, mechanism["domain"], 1
            )
        return mechanism

    def _macro_value(self, letter: str, context: EvaluationContext) -> Optional[str]:
        if letter == "s":
            return context.mail_from
        if letter == "l":
            return context.mail_from.split("@")[0]
        if letter == "o":
            parts = context.mail_from.split("@", 1)
            return parts[1] if len(parts) == 2 else None
        if letter == "d":
            return context.domain
        if letter == "i":
            return str(context.ip)
        if letter == "p":
            # Validated PTR domain names are not looked up
            return UNKNOWN_PTR_DOMAIN
        if letter == "v":
            return "in-addr" if context.ip_version == 4 else "ip6"
        if letter == "h":
            return context.helo
        return None

    def expand_macros(self, value: str, context: EvaluationContext) -> str:
        """
        Expands SPF macros (RFC 7208 § 7)

        Each ``%{<letter><digits><r><delimiter>}`` macro is split on its
        delimiter, truncated to the first ``digits`` parts, reversed if ``r``
        is given and joined with dots. Macros whose value is empty are left
        as they are. The ``%%``, ``%_`` and ``%-`` escapes are applied last.

        Args:
            value (str): A macro string
            context (EvaluationContext): Supplies the macro values

        Returns:
            str: The expanded string
        """

        def _expand(match: re.Match) -> str:
            letter, digits, reverse, delimiter = match.groups()
            replacement = self._macro_value(letter, context)
            if not replacement:
                return match.group(0)
            parts = replacement.split(delimiter or ".")
            if digits:
                parts = parts[: int(digits)]
            if reverse:
                parts.reverse()
            return ".".join(parts)

        value = MACRO_REGEX.sub(_expand, value)
        return value.replace("%%", "%").replace("%_", " ").replace("%-", "%20")

    def _cidr_length(
        self, mechanism: SPFMechanism, context: EvaluationContext
    ) -> Optional[int]:
        if context.ip_version == 4:
            return mechanism["cidr4"]
        return mechanism["cidr6"]

    def _match_addresses(
        self,
        name: str,
        addresses: list[str],
        cidr: Optional[int],
        context: EvaluationContext,
    ) -> bool:
        for address in addresses:
            if cidr is not None:
                network = ipaddress.ip_network(f"{address}/{cidr}", strict=False)
                if context.ip in network:
                    self.logger.debug(
                        f"{name}: {context.ip} => {address}/{cidr}: MATCH!"
                    )
                    return True
                self.logger.debug(f"{name}: {context.ip} => {address}/{cidr}: NO MATCH")
            else:
                if ipaddress.ip_address(address) == context.ip:
                    self.logger.debug(f"{name}: {context.ip} => {address}: MATCH!")
                    return True
                self.logger.debug(f"{name}: {context.ip} => {address}: NO MATCH")
        return False

    def _mech_all(self, mechanism: SPFMechanism, context: EvaluationContext) -> Result:
        return mechanism["qualifier"]

    def _mech_ip(self, mechanism: SPFMechanism, context: EvaluationContext) -> Result:
        network = mechanism["network"]
        if network.version != context.ip_version:
            self.logger.debug(f"mech_ip: {context.ip} => {network}: SKIP")
            return Result.NONE
        if context.ip in network:
            self.logger.debug(f"mech_ip: {context.ip} => {network}: MATCH!")
            return mechanism["qualifier"]
        self.logger.debug(f"mech_ip: {context.ip} => {network}: NO MATCH")
        return Result.NONE

    def _mech_a(self, mechanism: SPFMechanism, context: EvaluationContext) -> Result:
        context.budget.consume()
        domain = mechanism["domain"] or context.domain
        try:
            addresses = get_a_records(
                domain, context.ip_version, **self._dns_options
            )
        except DNSExceptionNXDOMAIN as error:
            self.logger.debug(f"mech_a: {domain}: {error}")
            return Result.NONE
        except DNSException as error:
            self.logger.debug(f"mech_a: {domain}: {error}")
            return Result.TEMPERROR

        cidr = self._cidr_length(mechanism, context)
        if self._match_addresses("mech_a", addresses, cidr, context):
            return mechanism["qualifier"]
        return Result.NONE

    def _mech_mx(self, mechanism: SPFMechanism, context: EvaluationContext) -> Result:
        context.budget.consume()
        domain = mechanism["domain"] or context.domain
        try:
            hosts = get_mx_records(domain, **self._dns_options)
        except DNSExceptionNXDOMAIN as error:
            self.logger.debug(f"mech_mx: {domain}: {error}")
            return Result.NONE
        except DNSException as error:
            self.logger.debug(f"mech_mx: {domain}: {error}")
            return Result.TEMPERROR

        # Implicit MX records point at an address and need no resolution
        hostnames = [
            host["hostname"] for host in hosts if not is_ip_address(host["hostname"])
        ]
        if len(hostnames) > MX_LOOKUP_LIMIT:
            self.logger.debug(f"mech_mx: {domain} has {len(hostnames)} MX hosts")
            return Result.PERMERROR

        addresses = []
        for hostname in hostnames:
            try:
                host_addresses = get_a_records(
                    hostname, context.ip_version, **self._dns_options
                )
            except DNSExceptionNXDOMAIN:
                host_addresses = []
            except DNSException as error:
                self.logger.debug(f"mech_mx: {hostname}: {error}")
                return Result.TEMPERROR
            self.logger.debug(
                f"mech_mx: mx={hostname} addresses={','.join(host_addresses)}"
            )
            addresses += host_addresses

        if not addresses:
            return Result.NONE
        cidr = self._cidr_length(mechanism, context)
        if self._match_addresses("mech_mx", addresses, cidr, context):
            return mechanism["qualifier"]
        return Result.NONE

    def _mech_ptr(self, mechanism: SPFMechanism, context: EvaluationContext) -> Result:
        context.budget.consume()
        domain = mechanism["domain"] or context.domain
        try:
            ptrs = get_reverse_dns(context.ip, **self._dns_options)
        except DNSException as error:
            self.logger.debug(f"mech_ptr: lookup={context.ip} => {error}")
            return Result.NONE
        if not ptrs:
            self.logger.debug(f"mech_ptr: {context.ip} has no PTR records")
            return Result.NONE
        if len(ptrs) > PTR_LOOKUP_LIMIT:
            self.logger.debug(f"mech_ptr: {context.ip} has {len(ptrs)} PTR records")
            return Result.PERMERROR

        names = []
        for ptr in ptrs:
            try:
                addresses = get_a_records(
                    ptr, context.ip_version, **self._dns_options
                )
            except DNSException as error:
                self.logger.debug(f"mech_ptr: lookup={ptr} => {error}")
                continue
            for address in addresses:
                if ipaddress.ip_address(address) == context.ip:
                    self.logger.debug(
                        f"mech_ptr: {context.ip} => {ptr} => {address}: MATCH!"
                    )
                    names.append(ptr.lower())
                else:
                    self.logger.debug(
                        f"mech_ptr: {context.ip} => {ptr} => {address}: NO MATCH"
                    )

        # Bogus domains such as "*.example.com" do not compile
        pattern = domain.replace(".", r"\.") + "$"
        try:
            suffix = re.compile(pattern, re.IGNORECASE)
        except re.error as error:
            self.logger.debug(f"mech_ptr: domain={domain}: {error}")
            return Result.PERMERROR
        for name in names:
            if suffix.search(name):
                self.logger.debug(f"mech_ptr: {name} => {domain}: MATCH!")
                return mechanism["qualifier"]
            self.logger.debug(f"mech_ptr: {name} => {domain}: NO MATCH")
        return Result.NONE

    def _mech_exists(
        self, mechanism: SPFMechanism, context: EvaluationContext
    ) -> Result:
        context.budget.consume()
        domain = mechanism["domain"]
        try:
            addresses = get_a_records(domain, 4, **self._dns_options)
        except DNSExceptionNXDOMAIN as error:
            self.logger.debug(f"mech_exists: {domain}: {error}")
            return Result.NONE
        except DNSException as error:
            self.logger.debug(f"mech_exists: {domain}: {error}")
            return Result.TEMPERROR
        if not addresses:
            self.logger.debug(f"mech_exists: {domain}: no A records")
            return Result.NONE
        self.logger.debug(f"mech_exists: {domain} result={','.join(addresses)}")
        return mechanism["qualifier"]

    def _mech_include(
        self, mechanism: SPFMechanism, context: EvaluationContext
    ) -> Result:
        domain = normalize_domain(mechanism["domain"])
        if not context.budget.enter(domain):
            self.logger.debug(f"circular reference detected: {domain}")
            return Result.NONE
        result = self._recurse(context, domain)
        self.logger.debug(f"mech_include: domain={domain} returned={result}")
        if result is Result.PASS:
            return Result.PASS
        if result in (Result.FAIL, Result.SOFTFAIL, Result.NEUTRAL):
            return Result.NONE
        if result is Result.TEMPERROR:
            return Result.TEMPERROR
        return Result.PERMERROR

    def _mod_redirect(
        self, modifier: SPFModifier, context: EvaluationContext
    ) -> Optional[Result]:
        domain = normalize_domain(modifier["value"])
        if not context.budget.enter(domain):
            self.logger.debug(f"circular reference detected: {domain}")
            return None
        return self._recurse(context, domain)

    def _mod_noop(
        self, modifier: SPFModifier, context: EvaluationContext
    ) -> Optional[Result]:
        # exp= explanations are not evaluated
        return None

    def _mod_unknown(
        self, modifier: SPFModifier, context: EvaluationContext
    ) -> Optional[Result]:
        self.logger.debug(f"skipping unknown modifier: {modifier['name']}")
        return None

    _MECHANISM_EVALUATORS = {
        MechanismKind.ALL: _mech_all,
        MechanismKind.A: _mech_a,
        MechanismKind.MX: _mech_mx,
        MechanismKind.PTR: _mech_ptr,
        MechanismKind.IP4: _mech_ip,
        MechanismKind.IP6: _mech_ip,
        MechanismKind.INCLUDE: _mech_include,
        MechanismKind.EXISTS: _mech_exists,
    }

    _MODIFIER_HANDLERS = {
        ModifierKind.REDIRECT: _mod_redirect,
        ModifierKind.EXP: _mod_noop,
        ModifierKind.VERSION: _mod_noop,
        ModifierKind.UNKNOWN: _mod_unknown,
    }


def check_host(
    ip: Union[str, IPAddress],
    domain: str,
    mail_from: Optional[str] = None,
    *,
    helo: str = DEFAULT_HELO,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = DEFAULT_DNS_TIMEOUT,
    timeout_retries: int = DEFAULT_DNS_TIMEOUT_RETRIES,
) -> SPFCheckResults:
    """
    Evaluates the SPF policy of a domain for a connecting IP address

    Args:
        ip (str): The connecting IPv4 or IPv6 address
        domain (str): The HELO or envelope-from domain
        mail_from (str): The envelope sender
        helo (str): The HELO/EHLO string
        nameservers (list): A list of nameservers to query
        resolver (dns.resolver.Resolver): A resolver object to use for DNS requests
        timeout (float): number of seconds to wait for an answer from DNS
        timeout_retries (int): The number of times to reattempt a query after a timeout

    Returns:
        dict: A ``dict`` with the following keys:
            - ``ip`` - The connecting IP address
            - ``domain`` - The normalized domain
            - ``mail_from`` - The envelope sender used for evaluation
            - ``helo`` - The HELO string used for evaluation
            - ``result`` - The SPF result label, e.g. ``Pass``
            - ``record`` - The SPF record of the domain, if one was found
            - ``dns_lookups`` - The number of DNS lookups used

    Raises:
        ValueError: ``ip`` is not a valid IP address
    """
    spf = SPF(
        helo,
        nameservers=nameservers,
        resolver=resolver,
        timeout=timeout,
        timeout_retries=timeout_retries,
    )
    result = spf.check_host(ip, domain, mail_from)
    domain = normalize_domain(domain)
    results: SPFCheckResults = {
        "ip": str(ipaddress.ip_address(str(ip))),
        "domain": domain,
        "mail_from": mail_from.lower() if mail_from else f"postmaster@{domain}",
        "helo": spf.helo,
        "result": str(result),
        "record": spf.spf_record,
        "dns_lookups": spf.dns_lookups,
    }
    return results
