# -*- coding: utf-8 -*-
"""Constant values"""

from __future__ import annotations
import os

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

__version__ = "1.0.0"

SYNTAX_ERROR_MARKER = "➞"

# RFC 7208 § 4.6.4
DNS_LOOKUP_LIMIT = 10
MX_LOOKUP_LIMIT = 10
PTR_LOOKUP_LIMIT = 10

DEFAULT_HELO = "unknown"
UNKNOWN_PTR_DOMAIN = "unknown"

DEFAULT_DNS_TIMEOUT = 2.0
DEFAULT_DNS_TIMEOUT_RETRIES = 2
SMTP_SESSION_TIMEOUT = 30.0

env = os.environ

if "DNS_TIMEOUT" in env:
    DEFAULT_DNS_TIMEOUT = float(env["DNS_TIMEOUT"])
if "DNS_TIMEOUT_RETRIES" in env:
    DEFAULT_DNS_TIMEOUT_RETRIES = int(env["DNS_TIMEOUT_RETRIES"])
if "SMTP_SESSION_TIMEOUT" in env:
    SMTP_SESSION_TIMEOUT = float(env["SMTP_SESSION_TIMEOUT"])

SPF_DEADLINE_SECONDS = max(SMTP_SESSION_TIMEOUT - 2, 1.0)
if "SPF_DEADLINE_SECONDS" in env:
    SPF_DEADLINE_SECONDS = float(env["SPF_DEADLINE_SECONDS"])
