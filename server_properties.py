"""
Reader for the Java properties format used by ``server.properties``.
"""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from restore_errors import ConfigReadError


logger = logging.getLogger(__name__)

PROPERTIES_FILE = "server.properties"
LEVEL_NAME_KEY = "level-name"

_ESCAPES = {"t": "\t", "n": "\n", "r": "\r", "f": "\f"}
_SEPARATORS = "=:"
_WHITESPACE = " \t\f"
_LINE_BREAK = re.compile(r"\r\n|\r|\n")


def _ends_with_continuation(line: str) -> bool:
    count = len(line) - len(line.rstrip("\\"))
    return count % 2 == 1


def _logical_lines(lines: Iterable[str]) -> Iterator[str]:
    pending: Optional[str] = None
    for raw in lines:
        line = raw.lstrip(_WHITESPACE)
        if pending is None:
            if not line or line[0] in "#!":
                continue
        else:
            line = pending + line
        if _ends_with_continuation(line):
            pending = line[:-1]
            continue
        pending = None
        yield line
    if pending is not None:
        yield pending


def _unescape(text: str, path: Path) -> str:
    result: List[str] = []
    index = 0
    while index < len(text):
        char = text[index]
        if char != "\\":
            result.append(char)
            index += 1
            continue
        index += 1
        if index >= len(text):
            break
        char = text[index]
        if char == "u":
            digits = text[index + 1 : index + 5]
            try:
                if len(digits) != 4:
                    raise ValueError(digits)
                result.append(chr(int(digits, 16)))
            except ValueError as error:
                raise ConfigReadError(
                    path, f"Malformed \\uxxxx escape in {path}: \\u{digits}"
                ) from error
            index += 5
            continue
        result.append(_ESCAPES.get(char, char))
        index += 1
    return "".join(result)


def _split_entry(line: str) -> Tuple[str, str]:
    index = 0
    while index < len(line):
        char = line[index]
        if char == "\\":
            index += 2
            continue
        if char in _SEPARATORS or char in _WHITESPACE:
            break
        index += 1
    key = line[:index]
    rest = line[index:].lstrip(_WHITESPACE)
    if rest and rest[0] in _SEPARATORS:
        rest = rest[1:].lstrip(_WHITESPACE)
    return key, rest


def parse_properties(text: str, path: Path) -> Dict[str, str]:
    properties: Dict[str, str] = {}
    for line in _logical_lines(_LINE_BREAK.split(text)):
        key, value = _split_entry(line)
        properties[_unescape(key, path)] = _unescape(value, path)
    return properties


def read_properties(path: Path) -> Dict[str, str]:
    try:
        data = path.read_bytes()
    except OSError as error:
        raise ConfigReadError(path, f"Failed to open file {path}: {error}") from error

    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        text = data.decode("iso-8859-1")
    return parse_properties(text, path)


def read_server_properties(instance_root: Path) -> Optional[Dict[str, str]]:
    """Read ``server.properties`` from an instance, or ``None`` if it is absent."""
    properties_file = instance_root / PROPERTIES_FILE
    if not properties_file.exists():
        logger.info("Unable to find %s.", properties_file)
        return None

    logger.info("Found %s", properties_file)
    properties = read_properties(properties_file)
    if LEVEL_NAME_KEY not in properties:
        logger.info(
            "%s not found in %s, assuming 'world'.", LEVEL_NAME_KEY, properties_file
        )
    return properties
