"""Reading, identifying and writing CycloneDX and SPDX documents."""

from __future__ import annotations

import io
import json
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from parlay.purl import InvalidPurlError, PackageURL


class SBOMFormat(str, Enum):
    CYCLONEDX_1_4_JSON = "CycloneDX 1.4 JSON"
    CYCLONEDX_1_4_XML = "CycloneDX 1.4 XML"
    SPDX_2_3_JSON = "SPDX 2.3 JSON"

    def __str__(self) -> str:
        return self.value


class SBOMError(Exception):
    """Raised when an SBOM cannot be identified, decoded or encoded."""


# --- CycloneDX XML mapping -------------------------------------------------

_NS_RE = re.compile(r"^\{http://cyclonedx\.org/schema/bom/([0-9.]+)\}")
_LIST_CONTAINERS = {
    "components": "component",
    "externalReferences": "reference",
    "properties": "property",
    "vulnerabilities": "vulnerability",
    "ratings": "rating",
    "advisories": "advisory",
    "references": "reference",
    "cwes": "cwe",
    "hashes": "hash",
    "tools": "tool",
    "authors": "author",
    "affects": "target",
    "services": "service",
    "versions": "version",
}
_REPEATED_IN = {
    "supplier": {"url", "contact"},
    "manufacture": {"url", "contact"},
    "provider": {"url", "contact"},
    "source": set(),
}
_ATTRS = {
    "component": {"type", "bom-ref", "mime-type"},
    "reference": {"type"},
    "property": {"name"},
    "vulnerability": {"bom-ref"},
    "hash": {"alg"},
    "service": {"bom-ref"},
}
_TEXT_KEYS = {"property": "value", "hash": "content"}
_SKIPPED_ROOT_KEYS = {"bomFormat", "specVersion", "serialNumber", "version", "$schema"}


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _scalar(tag: str, text: str) -> Any:
    converters: dict[str, Callable[[str], Any]] = {"score": float, "cwe": int}
    convert = converters.get(tag)
    if convert is None:
        return text
    try:
        return convert(text)
    except ValueError:
        return text


def _license_choice(elem: ET.Element) -> dict[str, Any]:
    if _local(elem.tag) == "expression":
        return {"expression": (elem.text or "").strip()}
    return {"license": _element_to_value(elem)}


def _element_to_value(elem: ET.Element) -> Any:
    tag = _local(elem.tag)
    children = list(elem)
    text = (elem.text or "").strip()

    if tag == "dependency":
        dep: dict[str, Any] = {"ref": elem.get("ref", "")}
        depends_on = [child.get("ref", "") for child in children]
        if depends_on:
            dep["dependsOn"] = depends_on
        return dep

    if not children and not elem.attrib:
        return _scalar(tag, text)

    result: dict[str, Any] = {_local(k): v for k, v in elem.attrib.items()}
    if not children and text:
        result[_TEXT_KEYS.get(tag, "value")] = text

    repeated = _REPEATED_IN.get(tag, set())
    for child in children:
        ctag = _local(child.tag)
        if ctag == "licenses":
            result["licenses"] = [_license_choice(c) for c in child]
        elif ctag == "dependencies":
            result["dependencies"] = [_element_to_value(c) for c in child]
        elif ctag in _LIST_CONTAINERS:
            result[ctag] = [_element_to_value(c) for c in child]
        elif ctag in repeated:
            result.setdefault(ctag, []).append(_element_to_value(child))
        else:
            result[ctag] = _element_to_value(child)
    return result


def _text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _fill(elem: ET.Element, tag: str, value: Any) -> None:
    if not isinstance(value, dict):
        elem.text = _text(value)
        return
    attrs = _ATTRS.get(tag, set())
    text_key = _TEXT_KEYS.get(tag)
    for key, item in value.items():
        if key in attrs:
            elem.set(key, _text(item))
        elif key == text_key:
            elem.text = _text(item)
        else:
            _append(elem, key, item)


def _append(parent: ET.Element, key: str, value: Any) -> None:
    if value is None:
        return
    if key == "licenses":
        container = ET.SubElement(parent, "licenses")
        for choice in value:
            if "expression" in choice:
                ET.SubElement(container, "expression").text = choice["expression"]
            elif "license" in choice:
                _fill(ET.SubElement(container, "license"), "license", choice["license"])
    elif key == "dependencies":
        container = ET.SubElement(parent, "dependencies")
        for dep in value:
            node = ET.SubElement(container, "dependency", {"ref": dep.get("ref", "")})
            for ref in dep.get("dependsOn", []):
                ET.SubElement(node, "dependency", {"ref": ref})
    elif key in _LIST_CONTAINERS:
        container = ET.SubElement(parent, key)
        item_tag = _LIST_CONTAINERS[key]
        for item in value:
            _fill(ET.SubElement(container, item_tag), item_tag, item)
    elif isinstance(value, list):
        for item in value:
            _fill(ET.SubElement(parent, key), key, item)
    else:
        _fill(ET.SubElement(parent, key), key, value)


def _decode_cyclonedx_json(raw: bytes) -> dict[str, Any]:
    bom = json.loads(raw)
    if not isinstance(bom, dict):
        raise ValueError("CycloneDX document must be a JSON object")
    return bom


def _decode_cyclonedx_xml(raw: bytes) -> dict[str, Any]:
    root = ET.fromstring(raw)
    if _local(root.tag) != "bom":
        raise ValueError(f"unexpected root element {_local(root.tag)!r}")
    match = _NS_RE.match(root.tag)
    bom: dict[str, Any] = {
        "bomFormat": "CycloneDX",
        "specVersion": match.group(1) if match else "1.4",
    }
    if "serialNumber" in root.attrib:
        bom["serialNumber"] = root.attrib["serialNumber"]
    if "version" in root.attrib:
        bom["version"] = int(root.attrib["version"])
    converted = _element_to_value(root)
    if isinstance(converted, dict):
        for key, value in converted.items():
            if key not in ("serialNumber", "version"):
                bom[key] = value
    return bom


def _decode_spdx_json(raw: bytes) -> dict[str, Any]:
    doc = json.loads(raw)
    if not isinstance(doc, dict):
        raise ValueError("SPDX document must be a JSON object")
    return doc


def _encode_json(bom: dict[str, Any]) -> str:
    return json.dumps(bom, separators=(",", ":")) + "\n"


def _encode_cyclonedx_xml(bom: dict[str, Any]) -> str:
    spec = bom.get("specVersion", "1.4")
    root = ET.Element("bom", {"xmlns": f"http://cyclonedx.org/schema/bom/{spec}"})
    if "serialNumber" in bom:
        root.set("serialNumber", _text(bom["serialNumber"]))
    root.set("version", _text(bom.get("version", 1)))
    for key, value in bom.items():
        if key not in _SKIPPED_ROOT_KEYS:
            _append(root, key, value)
    ET.indent(root)
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + ET.tostring(
        root, encoding="unicode"
    ) + "\n"


_DECODERS: dict[SBOMFormat, Callable[[bytes], dict[str, Any]]] = {
    SBOMFormat.CYCLONEDX_1_4_JSON: _decode_cyclonedx_json,
    SBOMFormat.CYCLONEDX_1_4_XML: _decode_cyclonedx_xml,
    SBOMFormat.SPDX_2_3_JSON: _decode_spdx_json,
}
_ENCODERS: dict[SBOMFormat, Callable[[dict[str, Any]], str]] = {
    SBOMFormat.CYCLONEDX_1_4_JSON: _encode_json,
    SBOMFormat.CYCLONEDX_1_4_XML: _encode_cyclonedx_xml,
    SBOMFormat.SPDX_2_3_JSON: _encode_json,
}


@dataclass
class SBOMDocument:
    """A decoded SBOM together with the format it was read from."""

    bom: dict[str, Any]
    format: SBOMFormat | None = None

    @property
    def is_cyclonedx(self) -> bool:
        if self.format is not None:
            return self.format in (SBOMFormat.CYCLONEDX_1_4_JSON, SBOMFormat.CYCLONEDX_1_4_XML)
        return "spdxVersion" not in self.bom and "packages" not in self.bom

    @property
    def is_spdx(self) -> bool:
        if self.format is not None:
            return self.format is SBOMFormat.SPDX_2_3_JSON
        return "spdxVersion" in self.bom or "packages" in self.bom

    def encode(self, stream) -> None:
        """Write the document to a text or binary stream in its own format."""
        encoder = _ENCODERS.get(self.format) if self.format is not None else None
        if encoder is None:
            raise SBOMError(f"no encoder for format {self.format}")
        text = encoder(self.bom)
        if isinstance(stream, io.TextIOBase):
            stream.write(text)
        else:
            stream.write(text.encode("utf-8"))


def _as_bytes(data: bytes | str) -> bytes:
    return data.encode("utf-8") if isinstance(data, str) else bytes(data)


def identify_sbom_format(data: bytes | str) -> SBOMFormat:
    """Guess the SBOM format from marker strings in the raw document."""
    raw = _as_bytes(data)
    if b"bomFormat" in raw and b"CycloneDX" in raw:
        return SBOMFormat.CYCLONEDX_1_4_JSON
    if b"xmlns" in raw and b"cyclonedx" in raw:
        return SBOMFormat.CYCLONEDX_1_4_XML
    if b"SPDX-2.3" in raw and b"SPDXRef-DOCUMENT" in raw:
        return SBOMFormat.SPDX_2_3_JSON
    raise SBOMError("could not identify SBOM format")


def decode_sbom_document(data: bytes | str) -> SBOMDocument:
    """Identify and decode an SBOM document."""
    raw = _as_bytes(data)
    sbom_format = identify_sbom_format(raw)
    try:
        bom = _DECODERS[sbom_format](raw)
    except (ValueError, ET.ParseError) as exc:
        raise SBOMError(f"could not decode input: {exc}") from exc
    return SBOMDocument(bom=bom, format=sbom_format)


def discover_cdx_components(bom: dict[str, Any]) -> list[dict[str, Any]]:
    """Return the metadata component and all components, nested ones included."""
    found: list[dict[str, Any]] = []

    def walk(components: list[dict[str, Any]]) -> None:
        for component in components:
            found.append(component)
            walk(component.get("components") or [])

    metadata_component = (bom.get("metadata") or {}).get("component")
    if metadata_component:
        walk([metadata_component])
    walk(bom.get("components") or [])
    return found


def purl_from_spdx_package(package: dict[str, Any]) -> PackageURL:
    """Return the package URL of the first purl external reference."""
    for ref in package.get("externalRefs") or []:
        if ref.get("referenceType") == "purl":
            return PackageURL.from_string(ref.get("referenceLocator", ""))
    raise InvalidPurlError("no purl found on SPDX package")