#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""Automated tests"""

import contextlib
import io
import ipaddress
import json
import os
import time
import unittest
from unittest.mock import patch

import dns.exception
import dns.resolver
import dns.reversename

import checkspf
import checkspf._cli
import checkspf.spf
import checkspf.utils
from checkspf.spf import (
    SPF,
    EvaluationContext,
    LookupBudget,
    MechanismKind,
    ModifierKind,
    Result,
)


def _ptr_name(ip):
    return str(dns.reversename.from_address(ip)).rstrip(".")


class _FakeRdata:
    def __init__(self, rdtype, value):
        self.rdtype = rdtype
        self.value = value
        if rdtype == "TXT":
            if isinstance(value, str):
                value = (value,)
            self.strings = tuple(part.encode() for part in value)

    def to_text(self):
        return self.value


class FakeResolver:
    """Answers DNS queries from an in-memory zone

    ``zone`` maps ``(name, rdtype)`` to a list of answers, ``failures`` maps
    ``(name, rdtype)`` to an exception to raise. Names that appear in neither
    for any type are NXDOMAIN; known names without the type are NoAnswer.
    """

    def __init__(self, zone=None, failures=None):
        self.zone = zone or {}
        self.failures = failures or {}
        self.queries = []

    def resolve(self, qname, rdtype, lifetime=None):
        name = str(qname).lower().rstrip(".")
        self.queries.append((name, rdtype))
        if (name, rdtype) in self.failures:
            raise self.failures[(name, rdtype)]
        if (name, rdtype) in self.zone:
            return [_FakeRdata(rdtype, value) for value in self.zone[(name, rdtype)]]
        known = set(n for n, _ in self.zone) | set(n for n, _ in self.failures)
        if name in known:
            raise dns.resolver.NoAnswer()
        raise dns.resolver.NXDOMAIN()

    def count(self, name, rdtype):
        return self.queries.count((name, rdtype))


def _slow_check_host(ip, domain, mail_from=None, **kwargs):
    time.sleep(5)
    return {}


def _fast_check_host(ip, domain, mail_from=None, **kwargs):
    return {
        "ip": ip,
        "domain": domain,
        "mail_from": mail_from,
        "helo": kwargs.get("helo"),
        "result": "Pass",
        "record": "v=spf1 +all",
        "dns_lookups": 0,
    }


class Test(unittest.TestCase):
    def check(self, zone, ip, domain="example.com", mail_from=None, **kwargs):
        resolver = FakeResolver(zone, kwargs.pop("failures", None))
        spf = SPF(kwargs.pop("helo", "unknown"), resolver=resolver)
        result = spf.check_host(ip, domain, mail_from)
        return result, spf, resolver

    def context(self, ip="192.0.2.3", domain="x.y.z.com", mail_from="a@b.com",
                helo="mail.example.org"):
        return EvaluationContext(
            ipaddress.ip_address(ip), domain, mail_from, helo, LookupBudget()
        )

    def testResultLabels(self):
        """Results convert to the RFC 7208 labels"""
        labels = ["None", "Pass", "Fail", "SoftFail", "Neutral", "TempError",
                  "PermError"]
        self.assertEqual([str(result) for result in Result], labels)

    def testIPv4RangePassAndFail(self):
        """An ip4 range passes addresses inside it and fails the rest"""
        zone = {("example.com", "TXT"): ["v=spf1 ip4:10.0.0.0/8 -all"]}
        result, spf, _ = self.check(zone, "10.1.2.3")
        self.assertIs(result, Result.PASS)
        self.assertEqual(spf.spf_record, "v=spf1 ip4:10.0.0.0/8 -all")
        result, _, _ = self.check(zone, "8.8.8.8")
        self.assertIs(result, Result.FAIL)

    def testNoSPFRecord(self):
        """Domains without a v=spf1 TXT record return None"""
        zone = {("example.com", "TXT"): ["google-site-verification=abc"]}
        self.assertIs(self.check(zone, "10.0.0.1")[0], Result.NONE)
        zone = {("example.com", "MX"): ["10 mx.example.com."]}
        self.assertIs(self.check(zone, "10.0.0.1")[0], Result.NONE)
        self.assertIs(self.check({}, "10.0.0.1")[0], Result.NONE)

    def testVersionMustBeTerminated(self):
        """v=spf10 is not an SPF record"""
        zone = {("example.com", "TXT"): ["v=spf10 +all"]}
        self.assertIs(self.check(zone, "10.0.0.1")[0], Result.NONE)

    def testMultipleSPFRecords(self):
        """Two SPF records are a permanent error"""
        zone = {
            ("example.com", "TXT"): ["v=spf1 +all", "v=spf1 -all", "other"],
        }
        result, spf, _ = self.check(zone, "10.0.0.1")
        self.assertIs(result, Result.PERMERROR)
        self.assertIsNone(spf.spf_record)

    def testTXTLookupTempError(self):
        """A failing TXT lookup is a temporary error"""
        failures = {("example.com", "TXT"): dns.resolver.NoNameservers()}
        result, _, _ = self.check({}, "10.0.0.1", failures=failures)
        self.assertIs(result, Result.TEMPERROR)

    def testRecordNormalized(self):
        """Records are lowercased, joined and have whitespace collapsed"""
        zone = {("example.com", "TXT"): [("V=SPF1   IP4:10.0.0.1", "\t-ALL")]}
        result, spf, _ = self.check(zone, "10.0.0.1")
        self.assertIs(result, Result.PASS)
        self.assertEqual(spf.spf_record, "v=spf1 ip4:10.0.0.1 -all")

    def testNeutralDefault(self):
        """Records where nothing matches are Neutral"""
        zone = {("example.com", "TXT"): ["v=spf1 ip4:192.0.2.1 exp=why.example.com"]}
        self.assertIs(self.check(zone, "10.0.0.1")[0], Result.NEUTRAL)
        zone = {("example.com", "TXT"): ["v=spf1"]}
        self.assertIs(self.check(zone, "10.0.0.1")[0], Result.NEUTRAL)

    def testQualifiers(self):
        """Each qualifier maps to its result"""
        for qualifier, expected in [
            ("", Result.PASS),
            ("+", Result.PASS),
            ("-", Result.FAIL),
            ("~", Result.SOFTFAIL),
            ("?", Result.NEUTRAL),
        ]:
            zone = {("example.com", "TXT"): [f"v=spf1 {qualifier}all"]}
            self.assertIs(self.check(zone, "10.0.0.1")[0], expected)

    def testFirstMatchWins(self):
        """Evaluation stops at the first conclusive mechanism"""
        zone = {
            ("example.com", "TXT"): [
                "v=spf1 ip4:10.0.0.1 a:later.example.com redirect=other.example.com"
            ],
        }
        result, _, resolver = self.check(zone, "10.0.0.1")
        self.assertIs(result, Result.PASS)
        self.assertEqual(resolver.count("later.example.com", "A"), 0)
        self.assertEqual(resolver.count("other.example.com", "TXT"), 0)

    def testSyntaxErrors(self):
        """Malformed terms are permanent errors"""
        for record in [
            "v=spf1 foo -all",
            "v=spf1 include: -all",
            "v=spf1 include -all",
            "v=spf1 exists -all",
            "v=spf1 all:example.com",
            "v=spf1 a/33 -all",
            "v=spf1 mx//129 -all",
            "v=spf1 ptr/24 -all",
            "v=spf1 ip4 -all",
            "v=spf1 redirect=%{d}.example.com",
        ]:
            zone = {("example.com", "TXT"): [record]}
            self.assertIs(
                self.check(zone, "10.0.0.1")[0], Result.PERMERROR, record
            )

    def testParseBeforeEvaluate(self):
        """A syntax error anywhere in the record stops evaluation before any
        mechanism runs"""
        zone = {
            ("example.com", "TXT"): ["v=spf1 a:first.example.com bogus! -all"],
            ("first.example.com", "A"): ["10.0.0.1"],
        }
        result, _, resolver = self.check(zone, "10.0.0.1")
        self.assertIs(result, Result.PERMERROR)
        self.assertEqual(resolver.count("first.example.com", "A"), 0)

    def testInvalidIPLiterals(self):
        """Invalid ip4/ip6 values are permanent errors"""
        for record in [
            "v=spf1 ip4:10.0.0.256 -all",
            "v=spf1 ip4:10.0.0.0/33 -all",
            "v=spf1 ip6:2001:db8::/129 -all",
            "v=spf1 ip6:2001:db8:O::1 -all",
            "v=spf1 ip4:relay.example.com -all",
        ]:
            zone = {("example.com", "TXT"): [record]}
            self.assertIs(
                self.check(zone, "10.0.0.1")[0], Result.PERMERROR, record
            )

    def testIPLiteralOfOtherFamily(self):
        """ip4/ip6 literals of the other address family never match"""
        zone = {("example.com", "TXT"): ["v=spf1 ip6:2001:db8::/32 ip4:2001:db8::1"]}
        self.assertIs(self.check(zone, "10.0.0.1")[0], Result.NEUTRAL)
        zone = {("example.com", "TXT"): ["v=spf1 ip4:0.0.0.0/0"]}
        self.assertIs(self.check(zone, "2001:db8::1")[0], Result.NEUTRAL)
        zone = {("example.com", "TXT"): ["v=spf1 ip6:2001:db8::/32 -all"]}
        self.assertIs(self.check(zone, "2001:db8::25")[0], Result.PASS)

    def testAMechanism(self):
        """The a mechanism matches the domain's addresses"""
        zone = {
            ("example.com", "TXT"): ["v=spf1 a -all"],
            ("example.com", "A"): ["192.0.2.10", "192.0.2.20"],
        }
        self.assertIs(self.check(zone, "192.0.2.20")[0], Result.PASS)
        self.assertIs(self.check(zone, "192.0.2.11")[0], Result.FAIL)

    def testAMechanismCIDR(self):
        """CIDR lengths apply per address family"""
        zone = {
            ("example.com", "TXT"): ["v=spf1 a:mail.example.com/24//64 -all"],
            ("mail.example.com", "A"): ["192.0.2.10"],
            ("mail.example.com", "AAAA"): ["2001:db8:1:2::10"],
        }
        self.assertIs(self.check(zone, "192.0.2.99")[0], Result.PASS)
        self.assertIs(self.check(zone, "192.0.3.1")[0], Result.FAIL)
        result, _, resolver = self.check(zone, "2001:db8:1:2::ffff")
        self.assertIs(result, Result.PASS)
        self.assertEqual(resolver.count("mail.example.com", "A"), 0)
        self.assertEqual(resolver.count("mail.example.com", "AAAA"), 1)

        zone[("example.com", "TXT")] = ["v=spf1 a:mail.example.com//64 -all"]
        self.assertIs(self.check(zone, "2001:db8:1:2::1")[0], Result.PASS)
        self.assertIs(self.check(zone, "192.0.2.11")[0], Result.FAIL)

    def testAMechanismDNSErrors(self):
        """Missing names have no opinion, other DNS errors are temporary"""
        zone = {("example.com", "TXT"): ["v=spf1 a:missing.example.com ?all"]}
        self.assertIs(self.check(zone, "192.0.2.1")[0], Result.NEUTRAL)
        failures = {("missing.example.com", "A"): dns.exception.Timeout()}
        result, _, _ = self.check(zone, "192.0.2.1", failures=failures)
        self.assertIs(result, Result.TEMPERROR)

    def testMXMechanism(self):
        """The mx mechanism matches the addresses of every exchange"""
        zone = {
            ("example.com", "TXT"): ["v=spf1 mx -all"],
            ("example.com", "MX"): [
                "10 mx1.example.com.",
                "20 gone.example.com.",
                "30 192.0.2.200",
                "40 mx2.example.com.",
            ],
            ("mx1.example.com", "A"): ["192.0.2.1"],
            ("mx2.example.com", "A"): ["192.0.2.2"],
        }
        result, spf, resolver = self.check(zone, "192.0.2.2")
        self.assertIs(result, Result.PASS)
        self.assertEqual(resolver.count("192.0.2.200", "A"), 0)
        self.assertEqual(spf.dns_lookups, 1)
        self.assertIs(self.check(zone, "192.0.2.200")[0], Result.FAIL)

    def testMXMechanismErrors(self):
        """Too many exchanges, and failing exchange lookups"""
        zone = {
            ("example.com", "TXT"): ["v=spf1 mx:mail.example.net/24 ?all"],
            ("mail.example.net", "MX"): [
                f"{i} mx{i}.example.net." for i in range(11)
            ],
        }
        self.assertIs(self.check(zone, "192.0.2.1")[0], Result.PERMERROR)

        zone[("mail.example.net", "MX")] = ["10 mx.example.net."]
        failures = {("mx.example.net", "A"): dns.resolver.NoNameservers()}
        result, _, _ = self.check(zone, "192.0.2.1", failures=failures)
        self.assertIs(result, Result.TEMPERROR)

        zone[("mail.example.net", "MX")] = ["0 ."]
        self.assertIs(self.check(zone, "192.0.2.1")[0], Result.NEUTRAL)

    def testPTRMechanism(self):
        """The ptr mechanism needs a forward-confirmed name under the domain"""
        zone = {
            ("example.com", "TXT"): ["v=spf1 ptr -all"],
            (_ptr_name("192.0.2.5"), "PTR"): [
                "Mail.Example.com.",
                "spoof.example.com.",
            ],
            ("mail.example.com", "A"): ["192.0.2.5"],
            ("spoof.example.com", "A"): ["198.51.100.1"],
        }
        self.assertIs(self.check(zone, "192.0.2.5")[0], Result.PASS)
        self.assertIs(self.check(zone, "192.0.2.6")[0], Result.FAIL)

        zone[("example.com", "TXT")] = ["v=spf1 ptr:example.org -all"]
        self.assertIs(self.check(zone, "192.0.2.5")[0], Result.FAIL)

        zone[("example.com", "TXT")] = ["v=spf1 ptr:*.example.com -all"]
        self.assertIs(self.check(zone, "192.0.2.5")[0], Result.PERMERROR)

    def testPTRLookupFailure(self):
        """A failing reverse lookup has no opinion"""
        zone = {("example.com", "TXT"): ["v=spf1 ptr ?all"]}
        failures = {(_ptr_name("192.0.2.5"), "PTR"): dns.resolver.NoNameservers()}
        result, _, _ = self.check(zone, "192.0.2.5", failures=failures)
        self.assertIs(result, Result.NEUTRAL)

    def testExistsMechanism(self):
        """exists matches when the expanded name has an A record"""
        zone = {
            ("example.com", "TXT"): ["v=spf1 exists:%{ir}.%{l}._spf.%{d} -all"],
            ("1.0.0.10.bob._spf.example.com", "A"): ["127.0.0.2"],
        }
        result, _, _ = self.check(zone, "10.0.0.1", mail_from="Bob@example.com")
        self.assertIs(result, Result.PASS)
        result, _, _ = self.check(zone, "10.0.0.2", mail_from="bob@example.com")
        self.assertIs(result, Result.FAIL)

    def testDefaultMailFromAndHelo(self):
        """mail_from defaults to postmaster@domain and helo to unknown"""
        zone = {
            ("example.com", "TXT"): ["v=spf1 exists:%{l}.%{h}.example.com -all"],
            ("postmaster.unknown.example.com", "A"): ["127.0.0.2"],
        }
        self.assertEqual(SPF().helo, "unknown")
        self.assertIs(self.check(zone, "10.0.0.1")[0], Result.PASS)
        result, _, _ = self.check(zone, "10.0.0.1", helo="mx.example.org")
        self.assertIs(result, Result.FAIL)

    def testIncludeResults(self):
        """include only passes on Pass and maps errors"""
        zone = {
            ("example.com", "TXT"): ["v=spf1 include:_spf.example.net ?all"],
            ("_spf.example.net", "TXT"): ["v=spf1 ip4:10.0.0.0/24 -all"],
        }
        self.assertIs(self.check(zone, "10.0.0.1")[0], Result.PASS)
        self.assertIs(self.check(zone, "10.0.1.1")[0], Result.NEUTRAL)

        zone[("_spf.example.net", "TXT")] = ["v=spf1 ~all"]
        self.assertIs(self.check(zone, "10.0.0.1")[0], Result.NEUTRAL)

        failures = {("_spf.example.net", "TXT"): dns.resolver.NoNameservers()}
        result, _, _ = self.check(zone, "10.0.0.1", failures=failures)
        self.assertIs(result, Result.TEMPERROR)

        del zone[("_spf.example.net", "TXT")]
        self.assertIs(self.check(zone, "10.0.0.1")[0], Result.PERMERROR)

        zone[("_spf.example.net", "TXT")] = ["v=spf1 ip4:10.0.0.300"]
        self.assertIs(self.check(zone, "10.0.0.1")[0], Result.PERMERROR)

    def testIncludeLoop(self):
        """Re-entering an included domain has no opinion"""
        zone = {
            ("original.example", "TXT"): ["v=spf1 include:loop.example -all"],
            ("loop.example", "TXT"): ["v=spf1 include:original.example -all"],
        }
        result, spf, resolver = self.check(zone, "10.0.0.1", "original.example")
        self.assertIs(result, Result.FAIL)
        self.assertEqual(spf.dns_lookups, 2)
        self.assertEqual(resolver.count("loop.example", "TXT"), 1)

        # Separate evaluations do not share their budgets
        self.assertIs(spf.check_host("10.0.0.1", "original.example"), Result.FAIL)
        self.assertEqual(spf.dns_lookups, 2)

    def testRedirect(self):
        """redirect replaces the result when no mechanism matched"""
        zone = {
            ("example.com", "TXT"): ["v=spf1 ip4:192.0.2.1 redirect=_spf.example.net"],
            ("_spf.example.net", "TXT"): ["v=spf1 ip4:10.0.0.0/8 ~all"],
        }
        result, spf, _ = self.check(zone, "10.0.0.1")
        self.assertIs(result, Result.PASS)
        self.assertEqual(spf.spf_record, zone[("example.com", "TXT")][0])
        self.assertIs(self.check(zone, "172.16.0.1")[0], Result.SOFTFAIL)

        # The redirect result is final, even when the target has no record
        del zone[("_spf.example.net", "TXT")]
        self.assertIs(self.check(zone, "172.16.0.1")[0], Result.NONE)

    def testRedirectLoop(self):
        """Redirect loops stop at the first re-entered domain"""
        zone = {
            ("a.example", "TXT"): ["v=spf1 redirect=b.example"],
            ("b.example", "TXT"): ["v=spf1 redirect=a.example"],
        }
        result, spf, _ = self.check(zone, "10.0.0.1", "a.example")
        self.assertIs(result, Result.NEUTRAL)
        self.assertEqual(spf.dns_lookups, 2)

    def testUnknownModifiers(self):
        """Unknown modifiers are skipped"""
        zone = {("example.com", "TXT"): ["v=spf1 foo=bar -ip4:10.0.0.1 moo=cow"]}
        self.assertIs(self.check(zone, "10.0.0.1")[0], Result.FAIL)

    def testLookupLimit(self):
        """Exceeding 10 DNS lookups is a permanent error"""
        ten = " ".join(f"a:h{i}.example.com" for i in range(10))
        zone = {("example.com", "TXT"): [f"v=spf1 {ten} +all"]}
        self.assertIs(self.check(zone, "10.0.0.1")[0], Result.PASS)

        zone = {("example.com", "TXT"): [f"v=spf1 {ten} a:h10.example.com +all"]}
        with self.assertLogs("checkspf.spf", level="DEBUG") as logs:
            result, spf, _ = self.check(zone, "10.0.0.1")
        self.assertIs(result, Result.PERMERROR)
        self.assertEqual(spf.dns_lookups, 11)
        self.assertTrue(
            any("{'dns_lookups': 11}" in line for line in logs.output)
        )

    def testLookupLimitIsShared(self):
        """Included records count against the same lookup limit"""
        six = " ".join(f"a:h{i}.example.com" for i in range(6))
        zone = {
            ("example.com", "TXT"): [f"v=spf1 {six} include:sub.example.com -all"],
            ("sub.example.com", "TXT"): [f"v=spf1 {six} +all"],
        }
        result, spf, _ = self.check(zone, "10.0.0.1")
        self.assertIs(result, Result.PERMERROR)
        self.assertEqual(spf.dns_lookups, 11)

    def testLookupLimitBeforeRedirect(self):
        """redirect is not followed once the lookup limit is exceeded"""
        eleven = " ".join(f"?a:h{i}.example.com" for i in range(11))
        zone = {
            ("example.com", "TXT"): [f"v=spf1 {eleven} redirect=other.example"],
            ("other.example", "TXT"): ["v=spf1 +all"],
        }
        result, spf, resolver = self.check(zone, "10.0.0.1")
        self.assertIs(result, Result.PERMERROR)
        self.assertEqual(spf.dns_lookups, 11)
        self.assertEqual(resolver.count("other.example", "TXT"), 0)

        nine = " ".join(f"?a:h{i}.example.com" for i in range(9))
        zone[("example.com", "TXT")] = [f"v=spf1 {nine} redirect=other.example"]
        result, spf, resolver = self.check(zone, "10.0.0.1")
        self.assertIs(result, Result.PASS)
        self.assertEqual(spf.dns_lookups, 10)
        self.assertEqual(resolver.count("other.example", "TXT"), 1)

    def testLookupBudget(self):
        """Entering a domain counts once and only once"""
        budget = LookupBudget()
        self.assertTrue(budget.enter("example.com"))
        self.assertFalse(budget.enter("example.com"))
        self.assertEqual(budget.count, 1)
        for _ in range(10):
            budget.consume()
        self.assertTrue(budget.exhausted)

    def testParseSPFRecord(self):
        """Terms are returned in record order"""
        spf = SPF()
        parsed = spf.parse_spf_record(
            "v=spf1 -ip4:10.0.0.0/8 ~mx:%{d}/24 include:spf.example.net "
            "exp=explain.example.com redirect=other.example.com ?all",
            self.context(domain="example.com"),
        )
        kinds = [m["kind"] for m in parsed["mechanisms"]]
        self.assertEqual(
            kinds,
            [MechanismKind.IP4, MechanismKind.MX, MechanismKind.INCLUDE,
             MechanismKind.ALL],
        )
        mx = parsed["mechanisms"][1]
        self.assertIs(mx["qualifier"], Result.SOFTFAIL)
        self.assertEqual(mx["domain"], "example.com")
        self.assertEqual(mx["cidr4"], 24)
        self.assertEqual(mx["value"], ":example.com/24")
        self.assertEqual(
            [m["kind"] for m in parsed["modifiers"]],
            [ModifierKind.VERSION, ModifierKind.EXP, ModifierKind.REDIRECT],
        )

    def testMacroExpansion(self):
        """Macros expand by splitting, truncating, reversing and joining"""
        spf = SPF()
        context = self.context()
        self.assertEqual(spf.expand_macros("%{s}", context), "a@b.com")
        self.assertEqual(spf.expand_macros("%{l}", context), "a")
        self.assertEqual(spf.expand_macros("%{o}", context), "b.com")
        self.assertEqual(spf.expand_macros("%{d}", context), "x.y.z.com")
        self.assertEqual(spf.expand_macros("%{d2r}", context), "y.x")
        self.assertEqual(spf.expand_macros("%{d2}", context), "x.y")
        self.assertEqual(spf.expand_macros("%{d9}", context), "x.y.z.com")
        self.assertEqual(spf.expand_macros("%{dr}", context), "com.z.y.x")
        self.assertEqual(spf.expand_macros("%{i}", context), "192.0.2.3")
        self.assertEqual(spf.expand_macros("%{ir}.%{v}", context), "3.2.0.192.in-addr")
        self.assertEqual(spf.expand_macros("%{p}", context), "unknown")
        self.assertEqual(spf.expand_macros("%{h}", context), "mail.example.org")
        self.assertEqual(
            spf.expand_macros("%{v}", self.context(ip="2001:db8::1")), "ip6"
        )

    def testMacroDelimiters(self):
        """Custom delimiters are replaced by dots"""
        spf = SPF()
        context = self.context(mail_from="first-last@b.com")
        self.assertEqual(spf.expand_macros("%{l-}", context), "first.last")
        self.assertEqual(spf.expand_macros("%{l1r-}", context), "first")

    def testMacroEscapes(self):
        """Escapes are applied after macro expansion"""
        spf = SPF()
        context = self.context()
        self.assertEqual(spf.expand_macros("%%", context), "%")
        self.assertEqual(spf.expand_macros("a%_b", context), "a b")
        self.assertEqual(spf.expand_macros("a%-b", context), "a%20b")
        self.assertEqual(spf.expand_macros("%%%{d1}", context), "%x")

    def testMacroWithoutValue(self):
        """Macros with an empty value are left as they are"""
        spf = SPF()
        self.assertEqual(spf.expand_macros("%{h}", self.context(helo="")), "%{h}")
        self.assertEqual(
            spf.expand_macros("%{o}.example", self.context(mail_from="nobody")),
            "%{o}.example",
        )

    def testMacroSyntax(self):
        """Bare percent signs are permanent errors"""
        for record in [
            "v=spf1 exists:%x.example.com -all",
            "v=spf1 exists:%_x.example.com -all",
            "v=spf1 a:example.com%",
        ]:
            zone = {("example.com", "TXT"): [record]}
            self.assertIs(
                self.check(zone, "10.0.0.1")[0], Result.PERMERROR, record
            )

    def testUnknownMacrosKeptLiteral(self):
        """Brace sequences that are not macros are looked up as written"""
        for record, name in [
            ("v=spf1 exists:%{x}.example.com -all", "%{x}.example.com"),
            ("v=spf1 exists:%{dr2}.example.com -all", "%{dr2}.example.com"),
            ("v=spf1 exists:%{d.example.com -all", "%{d.example.com"),
            ("v=spf1 a:%%{a}.example.com -all", "%{a}.example.com"),
        ]:
            zone = {("example.com", "TXT"): [record]}
            result, _, resolver = self.check(zone, "10.0.0.1")
            self.assertIs(result, Result.FAIL, record)
            self.assertEqual(resolver.count(name, "A"), 1, record)

        spf = SPF()
        self.assertEqual(spf.expand_macros("%{x}.%{d1}", self.context()), "%{x}.x")

    def testMacroPercentPlusAccepted(self):
        """'%+' is accepted even though RFC 7208 does not define it"""
        zone = {("example.com", "TXT"): ["v=spf1 exists:%+x.example.com -all"]}
        result, _, resolver = self.check(zone, "10.0.0.1")
        self.assertIs(result, Result.FAIL)
        self.assertEqual(resolver.count("%+x.example.com", "A"), 1)

    def testInvalidIP(self):
        """Invalid connecting addresses are a programming error"""
        self.assertRaises(ValueError, SPF().check_host, "10.0.0", "example.com")

    def testQuerySPFRecord(self):
        """query_spf_record raises errors mapped to results"""
        resolver = FakeResolver(
            {
                ("one.example", "TXT"): ["v=spf1 -all", "v=spf1 -all"],
                ("two.example", "TXT"): ["v=spf1 -all", "v=spf1 ~all"],
            },
            {("temp.example", "TXT"): dns.resolver.NoNameservers()},
        )
        self.assertEqual(
            checkspf.spf.query_spf_record("One.Example.", resolver=resolver),
            "v=spf1 -all",
        )
        self.assertRaises(
            checkspf.spf.MultipleSPFRTXTRecords,
            checkspf.spf.query_spf_record,
            "two.example",
            resolver=resolver,
        )
        self.assertRaises(
            checkspf.spf.SPFRecordNotFound,
            checkspf.spf.query_spf_record,
            "none.example",
            resolver=resolver,
        )
        self.assertRaises(
            checkspf.spf.SPFTempError,
            checkspf.spf.query_spf_record,
            "temp.example",
            resolver=resolver,
        )

    def testNormalizeDomain(self):
        """Domains are lowercased without zero-width characters"""
        self.assertEqual(
            checkspf.utils.normalize_domain("Exa\u200bmple.COM."), "example.com"
        )

    def testCheckHostResults(self):
        """check_host() returns a results dictionary"""
        resolver = FakeResolver({("example.com", "TXT"): ["v=spf1 a ip4:10.0.0.1"]})
        results = checkspf.check_host(
            "10.0.0.1", "Example.com", helo="mx.example.org", resolver=resolver
        )
        self.assertEqual(
            results,
            {
                "ip": "10.0.0.1",
                "domain": "example.com",
                "mail_from": "postmaster@example.com",
                "helo": "mx.example.org",
                "result": "Pass",
                "record": "v=spf1 a ip4:10.0.0.1",
                "dns_lookups": 1,
            },
        )
        self.assertEqual(json.loads(checkspf.results_to_json(results)), results)
        csv = checkspf.results_to_csv(results).splitlines()
        self.assertEqual(csv[0], "ip,domain,mail_from,helo,result,record,dns_lookups,error")
        self.assertIn(",Pass,", csv[1])

    def testDeadline(self):
        """Evaluations that outlive the deadline return no verdict"""
        with patch("checkspf._cli.check_host", _slow_check_host):
            results = checkspf._cli.check_host_with_deadline(
                "2001:DB8::0:1", "example.com", deadline=0.5
            )
        self.assertIsNone(results["result"])
        self.assertEqual(results["ip"], "2001:db8::1")
        self.assertIn("deadline", results["error"])
        self.assertEqual(results["mail_from"], "postmaster@example.com")

        with patch("checkspf._cli.check_host", _fast_check_host):
            results = checkspf._cli.check_host_with_deadline(
                "10.0.0.1", "example.com", deadline=5, helo="mx.example.org"
            )
        self.assertEqual(results["result"], "Pass")
        self.assertEqual(results["helo"], "mx.example.org")

    def testCLI(self):
        """The CLI prints JSON results"""
        argv = ["checkspf", "10.0.0.1", "example.com", "-H", "mx.example.org"]
        output = io.StringIO()
        with patch("sys.argv", argv), patch(
            "checkspf._cli.check_host", _fast_check_host
        ), contextlib.redirect_stdout(output):
            checkspf._cli._main()
        results = json.loads(output.getvalue())
        self.assertEqual(results["result"], "Pass")
        self.assertEqual(results["helo"], "mx.example.org")

    @unittest.skipUnless(os.environ.get("NETWORK_TESTS"), "no network")
    def testFacebookMailPass(self):
        """A published SPF record authorizes its own sending range"""
        result = SPF().check_host("69.171.232.145", "facebookmail.com")
        self.assertIs(result, Result.PASS)


if __name__ == "__main__":
    unittest.main(verbosity=2)
