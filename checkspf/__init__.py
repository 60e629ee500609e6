# -*- coding: utf-8 -*-

"""Evaluates Sender Policy Framework (SPF) policies for connecting hosts"""

from __future__ import annotations

import json
import logging
from csv import DictWriter
from io import StringIO
from typing import Union

import checkspf._constants
from checkspf.spf import (
    SPF,
    EvaluationContext,
    LookupBudget,
    MechanismKind,
    ModifierKind,
    Result,
    SPFCheckResults,
    SPFError,
    check_host,
    query_spf_record,
)

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


__version__ = checkspf._constants.__version__

__all__ = [
    "SPF",
    "EvaluationContext",
    "LookupBudget",
    "MechanismKind",
    "ModifierKind",
    "Result",
    "SPFCheckResults",
    "SPFError",
    "check_host",
    "query_spf_record",
    "results_to_json",
    "results_to_csv",
    "output_to_file",
]

logging.getLogger(__name__).addHandler(logging.NullHandler())


def results_to_json(
    results: Union[SPFCheckResults, list[SPFCheckResults]],
) -> str:
    """
    Converts a dictionary of results or list of results to a JSON string

    Args:
        results (dict): A dictionary of results

    Returns:
        str: Results in JSON format
    """
    return json.dumps(results, ensure_ascii=False, indent=2)


def results_to_csv(
    results: Union[SPFCheckResults, list[SPFCheckResults]],
) -> str:
    """
    Converts a dictionary of results or list of results to CSV

    Args:
        results (dict): A dictionary of results

    Returns:
        str: A CSV of results
    """
    fields = [
        "ip",
        "domain",
        "mail_from",
        "helo",
        "result",
        "record",
        "dns_lookups",
        "error",
    ]
    if isinstance(results, dict):
        results = [results]
    output = StringIO(newline="\n")
    writer = DictWriter(output, fieldnames=fields)
    writer.writeheader()
    writer.writerows(results)
    output.flush()

    return output.getvalue()


def output_to_file(path: str, content: str):
    """
    Write given content to the given path

    Args:
        path (str): A file path
        content (str): JSON or CSV text
    """
    with open(
        path, "w", newline="\n", encoding="utf-8", errors="ignore"
    ) as output_file:
        output_file.write(content)
