"""Derive tags, parameters and identifiers from feature-file sources.

Runner events do not carry rule tags, example-row parameters, code references
or test-case IDs; they are recomputed here from the feature text.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Sequence
from pathlib import Path

from bddportal.client.messages import ItemAttribute
from bddportal.constants import TEST_CASE_ID_PREFIX
from bddportal.events.model import Feature, Rule, TestCase
from bddportal.utils import relative_path, split_tokens, uri_to_path

logger = logging.getLogger(__name__)

LINE_SPLIT = re.compile(r"\r?\n")

SourceLoader = Callable[[str], str]
Parameters = list[tuple[str, str]]


def read_source(uri: str) -> str:
    """Default blob loader reading a feature file from disk by its URI."""
    return Path(uri_to_path(uri)).read_text(encoding="utf-8")


def _lines(source: str) -> list[str]:
    return LINE_SPLIT.split(source)


def get_feature_tags(feature: Feature) -> list[str]:
    """Collect the tags written above the feature keyword.

    Parameters
    ----------
    feature : Feature
        Parsed feature with its source text

    Returns
    -------
    list[str]
        Tags in source order, ``@`` included
    """
    if not feature.keyword:
        return []

    tag_lines = []
    for line in _lines(feature.source):
        if line.strip().startswith(feature.keyword):
            break
        if line.strip().startswith("@"):
            tag_lines.append(line.strip())
    return split_tokens(tag_lines)


def get_rule_tags(feature: Feature, rule: Rule) -> list[str]:
    """Collect the tags written between a rule and its previous sibling.

    Parameters
    ----------
    feature : Feature
        Feature owning the rule
    rule : Rule
        Rule to find tags for

    Returns
    -------
    list[str]
        Tags in source order; empty when the rule is not a child of the feature
    """
    children = sorted(feature.children, key=lambda child: child.location.line)
    index = next((i for i, child in enumerate(children) if child is rule), None)
    if index is None:
        return []

    lower_bound = children[index - 1].location.line if index > 0 else feature.location.line
    lines = _lines(feature.source)

    tag_lines = []
    # lines are 1-based; every tag line after the previous sibling counts
    for number in range(rule.location.line - 1, lower_bound, -1):
        if number - 1 >= len(lines):
            continue
        stripped = lines[number - 1].strip()
        if stripped.startswith("@"):
            tag_lines.append(stripped)
    tag_lines.reverse()
    return split_tokens(tag_lines)


def _is_table_row(line: str) -> bool:
    stripped = line.strip()
    return len(stripped) > 1 and stripped.startswith("|") and stripped.endswith("|")


def _find_header_row(lines: Sequence[str], row_index: int) -> int:
    previous = -1
    for index in range(row_index - 1, -1, -1):
        stripped = lines[index].strip()
        if not stripped:
            continue
        if not _is_table_row(stripped):
            return previous
        previous = index
    return -1


def _split_row(line: str) -> list[str]:
    return [cell.strip() for cell in line.strip().split("|") if cell.strip()]


def get_parameters(test_case: TestCase, loader: SourceLoader = read_source) -> Parameters | None:
    """Zip the example row of an outline test case with its header.

    Parameters
    ----------
    test_case : TestCase
        Test case whose line may point at an example row
    loader : SourceLoader
        Blob loader returning the feature source for a URI

    Returns
    -------
    Parameters | None
        ``(name, value)`` pairs in column order, or None when the test case is
        not an example row or the table is malformed
    """
    try:
        lines = _lines(loader(test_case.uri))
    except (OSError, UnicodeDecodeError) as e:
        logger.error("Unable to read feature file %s: %s", test_case.uri, e)
        return None

    row_index = test_case.line - 1
    if row_index < 0 or row_index >= len(lines) or not _is_table_row(lines[row_index]):
        return None

    header_index = _find_header_row(lines, row_index)
    if header_index < 0:
        return None

    names = _split_row(lines[header_index])
    values = _split_row(lines[row_index])
    if not values or len(names) != len(values):
        return None
    return list(zip(names, values))


def format_parameters(params: Iterable[tuple[str, str]]) -> str:
    """Render parameters as ``[k1:v1;k2:v2]`` sorted by key."""
    return "[" + ";".join(f"{key}:{value}" for key, value in sorted(params)) + "]"


def get_code_ref(test_case: TestCase, params: Parameters | None = None) -> str:
    """Build the code reference of a test case.

    Returns
    -------
    str
        ``<path>/[SCENARIO:<name>]`` or ``<path>/[EXAMPLE:<name>[k:v;...]]``
    """
    path = relative_path(test_case.uri)
    if params:
        return f"{path}/[EXAMPLE:{test_case.name}{format_parameters(params)}]"
    return f"{path}/[SCENARIO:{test_case.name}]"


def get_test_case_id(test_case: TestCase, params: Parameters | None = None) -> str:
    """Return the ``@tc_id:`` override of a test case, else its code reference."""
    for tag in test_case.tags:
        if tag.startswith(TEST_CASE_ID_PREFIX):
            test_case_id = tag[len(TEST_CASE_ID_PREFIX) :]
            if params:
                test_case_id += format_parameters(params)
            return test_case_id
    return get_code_ref(test_case, params)


def to_attribute(tag: str) -> ItemAttribute:
    """Turn ``@key:value`` into a key/value attribute, anything else into a value."""
    text = tag.strip()
    if text.startswith("@"):
        text = text[1:]
    key, separator, value = text.partition(":")
    if separator:
        return ItemAttribute(key=key, value=value)
    return ItemAttribute(key=None, value=text)


def get_attributes(tags: Iterable[str], exclude: Iterable[str] = ()) -> list[ItemAttribute]:
    """Convert tags into attributes, dropping test-case IDs and excluded tags.

    Parameters
    ----------
    tags : Iterable[str]
        Tags of the item
    exclude : Iterable[str]
        Tags already reported on an ancestor item

    Returns
    -------
    list[ItemAttribute]
        Attributes in tag order, duplicates removed
    """
    excluded = set(exclude)
    attributes: list[ItemAttribute] = []
    for tag in tags:
        if tag.startswith(TEST_CASE_ID_PREFIX) or tag in excluded:
            continue
        attribute = to_attribute(tag)
        if attribute not in attributes:
            attributes.append(attribute)
    return attributes
