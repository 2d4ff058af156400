import re

import pytest
import requests
import responses

from parlay.sbom import SBOMDocument
from parlay.scorecard import enrich_sbom, scorecard_url

SCORECARD_URL = "https://api.securityscorecards.dev/projects/example.com/repository"
REGISTRIES = re.compile(r"^https://packages\.ecosyste\.ms/api/v1/registries")


@pytest.fixture
def rsps():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as mock:
        yield mock


@pytest.fixture
def ecosystems_api(rsps):
    rsps.add(
        responses.GET,
        REGISTRIES,
        json={"repository_url": "https://example.com/repository"},
    )
    rsps.add(responses.GET, SCORECARD_URL, body="{}", status=200)
    return rsps


def _registry_calls(rsps):
    return sum(1 for call in rsps.calls if REGISTRIES.match(call.request.url))


def test_scorecard_url_replaces_scheme():
    assert scorecard_url("https://github.com/a/b") == (
        "https://api.securityscorecards.dev/projects/github.com/a/b"
    )


def test_scorecard_url_leaves_other_schemes():
    assert scorecard_url("http://example.com/x") == "http://example.com/x"


def test_enrich_sbom_cyclonedx(ecosystems_api):
    bom = {"components": [{"purl": "pkg:type/example"}]}
    doc = SBOMDocument(bom=bom)

    enrich_sbom(doc)

    assert len(bom["components"]) == 1
    refs = bom["components"][0]["externalReferences"]
    assert len(refs) == 1
    assert refs[0]["url"] == SCORECARD_URL
    assert refs[0]["comment"] == "OpenSSF Scorecard"
    assert refs[0]["type"] == "other"

    assert len(ecosystems_api.calls) == 2
    assert _registry_calls(ecosystems_api) == 1


def test_enrich_sbom_cyclonedx_nested_components(ecosystems_api):
    bom = {
        "components": [
            {
                "purl": "pkg:type/example",
                "components": [{"purl": "pkg:otherType/otherExample"}],
            }
        ]
    }
    doc = SBOMDocument(bom=bom)

    enrich_sbom(doc)

    assert len(bom["components"]) == 1
    outer = bom["components"][0]
    inner = outer["components"][0]
    for component in (outer, inner):
        refs = component["externalReferences"]
        assert len(refs) == 1
        assert refs[0]["url"] == SCORECARD_URL
        assert refs[0]["comment"] == "OpenSSF Scorecard"
        assert refs[0]["type"] == "other"

    assert len(ecosystems_api.calls) == 4
    assert _registry_calls(ecosystems_api) == 2


def test_enrich_sbom_error_fetching_package_data(rsps):
    rsps.add(responses.GET, REGISTRIES, body=requests.ConnectionError("boom"))
    bom = {"components": [{"purl": "pkg:/example"}]}

    enrich_sbom(SBOMDocument(bom=bom))

    assert len(bom["components"]) == 1
    assert "externalReferences" not in bom["components"][0]


def test_enrich_sbom_error_fetching_scorecard(rsps):
    rsps.add(
        responses.GET,
        REGISTRIES,
        json={"repository_url": "https://example.com/repository"},
    )
    rsps.add(responses.GET, SCORECARD_URL, body=requests.ConnectionError("boom"))
    bom = {"components": [{"purl": "pkg:npm/example"}]}

    enrich_sbom(SBOMDocument(bom=bom))

    assert "externalReferences" not in bom["components"][0]


def test_enrich_sbom_scorecard_not_found(rsps):
    rsps.add(
        responses.GET,
        REGISTRIES,
        json={"repository_url": "https://example.com/repository"},
    )
    rsps.add(responses.GET, SCORECARD_URL, status=404)
    bom = {"components": [{"purl": "pkg:npm/example"}]}

    enrich_sbom(SBOMDocument(bom=bom))

    assert "externalReferences" not in bom["components"][0]


def test_enrich_sbom_without_repository_url(rsps):
    rsps.add(responses.GET, REGISTRIES, json={"description": "no repo"})
    bom = {"components": [{"purl": "pkg:npm/example"}]}

    enrich_sbom(SBOMDocument(bom=bom))

    assert "externalReferences" not in bom["components"][0]
    assert len(rsps.calls) == 1


def test_enrich_sbom_spdx(ecosystems_api):
    bom = {
        "packages": [
            {
                "externalRefs": [
                    {
                        "referenceCategory": "OTHER",
                        "referenceType": "purl",
                        "referenceLocator": "pkg:npm/example/widget",
                    }
                ]
            }
        ]
    }
    doc = SBOMDocument(bom=bom)

    enrich_sbom(doc)

    refs = bom["packages"][0]["externalRefs"]
    assert len(refs) == 2
    assert refs[1]["referenceLocator"] == SCORECARD_URL
    assert refs[1]["referenceType"] == "openssfscorecard"
    assert refs[1]["referenceCategory"] == "OTHER"


def test_enrich_sbom_returns_same_document(ecosystems_api):
    doc = SBOMDocument(bom={"components": []})
    assert enrich_sbom(doc) is doc
    assert len(ecosystems_api.calls) == 0