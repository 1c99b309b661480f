"""Shallow structural views over resource documents.

The canonical indexer only needs a document's root name and a handful of
scalar children, so every supported format implements the small ShallowNode
interface instead of a full object model.
"""

from __future__ import annotations

import json
import os
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Tuple

from fhirpkg.errors import IndexParseFailure

JSON_EXTENSIONS = (".json",)
XML_EXTENSIONS = (".xml",)


class ShallowNode(ABC):
    """Root name plus dotted-path access to child values of a document."""

    @property
    @abstractmethod
    def root_name(self) -> Optional[str]:
        """Name of the root element (the resource type for FHIR resources)."""

    @abstractmethod
    def child_scalar(self, path: str) -> Tuple[Optional[str], bool]:
        """Return ``(value, True)`` if ``path`` leads to a scalar, else ``(None, False)``."""

    @abstractmethod
    def has_child(self, path: str) -> bool:
        """True if an element exists at ``path`` regardless of its kind."""

    def get_string(self, path: str) -> Optional[str]:
        value, ok = self.child_scalar(path)
        return value if ok else None


class JsonShallowNode(ShallowNode):
    """FHIR JSON: the root name is the ``resourceType`` property."""

    def __init__(self, document: Dict[str, Any]):
        self._doc = document

    @classmethod
    def parse(cls, text: str) -> "JsonShallowNode":
        try:
            document = json.loads(text)
        except (ValueError, RecursionError) as exc:
            raise IndexParseFailure(f"Invalid JSON: {exc}") from exc
        if not isinstance(document, dict):
            raise IndexParseFailure("JSON document root is not an object")
        return cls(document)

    @property
    def root_name(self) -> Optional[str]:
        value = self._doc.get("resourceType")
        return value if isinstance(value, str) else None

    def _walk(self, path: str) -> Tuple[Any, bool]:
        node: Any = self._doc
        for part in path.split("."):
            if isinstance(node, list):
                if not node:
                    return None, False
                node = node[0]
            if not isinstance(node, dict) or part not in node:
                return None, False
            node = node[part]
        return node, True

    def child_scalar(self, path: str) -> Tuple[Optional[str], bool]:
        node, ok = self._walk(path)
        if not ok or node is None or isinstance(node, (dict, list)):
            return None, False
        if isinstance(node, bool):
            return ("true" if node else "false"), True
        return str(node), True

    def has_child(self, path: str) -> bool:
        node, ok = self._walk(path)
        if not ok or node is None:
            return False
        if isinstance(node, list):
            return len(node) > 0
        return True


def _local_name(tag: Any) -> str:
    if not isinstance(tag, str):
        return ""
    return tag.rsplit("}", 1)[-1]


class XmlShallowNode(ShallowNode):
    """FHIR XML: primitive values live in the ``value`` attribute of each child."""

    def __init__(self, root: ET.Element):
        self._root = root

    @classmethod
    def parse(cls, text: str) -> "XmlShallowNode":
        try:
            root = ET.fromstring(text)
        except ET.ParseError as exc:
            raise IndexParseFailure(f"Invalid XML: {exc}") from exc
        return cls(root)

    @property
    def root_name(self) -> Optional[str]:
        return _local_name(self._root.tag) or None

    def _find(self, path: str) -> Optional[ET.Element]:
        node = self._root
        for part in path.split("."):
            found = None
            for child in node:
                if _local_name(child.tag) == part:
                    found = child
                    break
            if found is None:
                return None
            node = found
        return node

    def child_scalar(self, path: str) -> Tuple[Optional[str], bool]:
        node = self._find(path)
        if node is None:
            return None, False
        if "value" in node.attrib:
            return node.attrib["value"], True
        if len(node) == 0 and node.text and node.text.strip():
            return node.text.strip(), True
        return None, False

    def has_child(self, path: str) -> bool:
        return self._find(path) is not None


_PARSERS: Dict[str, Callable[[str], ShallowNode]] = {}
for _ext in JSON_EXTENSIONS:
    _PARSERS[_ext] = JsonShallowNode.parse
for _ext in XML_EXTENSIONS:
    _PARSERS[_ext] = XmlShallowNode.parse


def is_resource_file(path: str) -> bool:
    """True for file extensions that have a shallow-node parser."""
    return os.path.splitext(path)[1].lower() in _PARSERS


def parse_file(path: str) -> ShallowNode:
    """Peek a file by extension.

    Raises:
        IndexParseFailure: unknown extension, unreadable file or invalid document.
    """
    parser = _PARSERS.get(os.path.splitext(path)[1].lower())
    if parser is None:
        raise IndexParseFailure(f"No structural parser for {os.path.basename(path)}")
    try:
        with open(path, "r", encoding="utf-8-sig") as fh:
            text = fh.read()
    except (OSError, UnicodeDecodeError) as exc:
        raise IndexParseFailure(f"Cannot read {path}: {exc}") from exc
    return parser(text)
