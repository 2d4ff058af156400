import io
import json

import pytest

from parlay.purl import InvalidPurlError
from parlay.sbom import (
    SBOMDocument,
    SBOMError,
    SBOMFormat,
    decode_sbom_document,
    discover_cdx_components,
    identify_sbom_format,
    purl_from_spdx_package,
)

CDX_JSON = b'{"bomFormat":"CycloneDX","specVersion":"1.4","version":1}'
CDX_XML = b'<bom xmlns="http://cyclonedx.org/schema/bom/1.4" version="1"></bom>'
SPDX_2_3 = b'{"SPDXID":"SPDXRef-DOCUMENT","spdxVersion":"SPDX-2.3"}'
SPDX_2_2 = b'{"SPDXID":"SPDXRef-DOCUMENT","spdxVersion":"SPDX-2.2"}'


def test_decode_cyclonedx_json():
    doc = decode_sbom_document(CDX_JSON)
    assert doc.format is SBOMFormat.CYCLONEDX_1_4_JSON
    assert doc.bom["specVersion"] == "1.4"
    assert doc.is_cyclonedx


def test_decode_cyclonedx_xml():
    doc = decode_sbom_document(CDX_XML)
    assert doc.format is SBOMFormat.CYCLONEDX_1_4_XML
    assert doc.bom["specVersion"] == "1.4"
    assert doc.bom["version"] == 1


def test_decode_spdx_json():
    doc = decode_sbom_document(SPDX_2_3)
    assert doc.format is SBOMFormat.SPDX_2_3_JSON
    assert doc.bom["spdxVersion"] == "SPDX-2.3"
    assert doc.is_spdx


def test_decode_unknown():
    with pytest.raises(SBOMError, match="could not identify SBOM format"):
        decode_sbom_document(SPDX_2_2)


def test_decode_broken_input():
    with pytest.raises(SBOMError, match="could not decode input"):
        decode_sbom_document(b'{"bomFormat": "CycloneDX", ')


@pytest.mark.parametrize(
    "data, expected",
    [
        (CDX_JSON, "CycloneDX 1.4 JSON"),
        (CDX_XML, "CycloneDX 1.4 XML"),
        (SPDX_2_3, "SPDX 2.3 JSON"),
    ],
)
def test_identify_sbom_format(data, expected):
    assert str(identify_sbom_format(data)) == expected


def test_identify_unknown_format():
    with pytest.raises(SBOMError, match="could not identify SBOM format"):
        identify_sbom_format(SPDX_2_2)


def test_xml_round_trip():
    xml = b"""<?xml version="1.0"?>
<bom xmlns="http://cyclonedx.org/schema/bom/1.4" version="1">
  <components>
    <component type="library" bom-ref="pkg:npm/lodash@4.17.21">
      <name>lodash</name>
      <version>4.17.21</version>
      <purl>pkg:npm/lodash@4.17.21</purl>
      <licenses><expression>(MIT)</expression></licenses>
      <externalReferences>
        <reference type="website"><url>https://example.com</url></reference>
      </externalReferences>
      <properties><property name="ecosystems:topic">utility</property></properties>
    </component>
  </components>
</bom>"""
    doc = decode_sbom_document(xml)
    component = doc.bom["components"][0]
    assert component["name"] == "lodash"
    assert component["bom-ref"] == "pkg:npm/lodash@4.17.21"
    assert component["licenses"] == [{"expression": "(MIT)"}]
    assert component["properties"] == [{"name": "ecosystems:topic", "value": "utility"}]
    assert component["externalReferences"] == [
        {"type": "website", "url": "https://example.com"}
    ]

    out = io.StringIO()
    doc.encode(out)
    again = decode_sbom_document(out.getvalue())
    assert again.bom == doc.bom


def test_json_encode_round_trip_binary_stream():
    doc = decode_sbom_document(CDX_JSON)
    doc.bom["components"] = [{"name": "x", "purl": "pkg:npm/x@1"}]
    out = io.BytesIO()
    doc.encode(out)
    assert json.loads(out.getvalue()) == doc.bom


def test_encode_without_format():
    doc = SBOMDocument(bom={})
    with pytest.raises(SBOMError, match="no encoder for format"):
        doc.encode(io.StringIO())


def test_discover_cdx_components_includes_metadata_and_nested():
    bom = {
        "metadata": {"component": {"bom-ref": "meta"}},
        "components": [
            {"bom-ref": "a", "components": [{"bom-ref": "a1"}]},
            {"bom-ref": "b"},
        ],
    }
    refs = [c["bom-ref"] for c in discover_cdx_components(bom)]
    assert refs == ["meta", "a", "a1", "b"]
    assert discover_cdx_components({}) == []


def test_discovered_components_are_the_originals():
    bom = {"components": [{"name": "x"}]}
    discover_cdx_components(bom)[0]["description"] = "d"
    assert bom["components"][0]["description"] == "d"


def test_purl_from_spdx_package():
    package = {
        "externalRefs": [
            {"referenceType": "cpe23Type", "referenceLocator": "cpe:2.3:a"},
            {
                "referenceCategory": "PACKAGE-MANAGER",
                "referenceType": "purl",
                "referenceLocator": "pkg:pypi/spdx-tools@0.5.2",
            },
        ]
    }
    purl = purl_from_spdx_package(package)
    assert purl.to_string() == "pkg:pypi/spdx-tools@0.5.2"


def test_purl_from_spdx_package_missing():
    with pytest.raises(InvalidPurlError, match="no purl found"):
        purl_from_spdx_package({"externalRefs": []})