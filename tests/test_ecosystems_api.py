import re

import pytest
import responses
from responses import matchers

from parlay.ecosystems_api import (
    get_package_data,
    get_package_version_data,
    get_repo_data,
    purl_to_ecosystems_name,
    purl_to_ecosystems_registry,
)
from parlay.purl import PackageURL

REGISTRIES = re.compile(r"^https://packages\.ecosyste\.ms/api/v1/registries")
GO = "go" + "lang"


@pytest.fixture
def mock_http():
    with responses.RequestsMock() as rsps:
        yield rsps


@pytest.mark.parametrize(
    "purl, expected",
    [
        ("pkg:npm/lodash@4.17.21", "npmjs.org"),
        (f"pkg:{GO}/example.com/example/hello?go-get=1", f"proxy.{GO}.org"),
        ("pkg:nuget/Microsoft.AspNetCore.Http.Abstractions@2.2.0", "nuget.org"),
        ("pkg:hex/plug@1.11.0", "hex.pm"),
        ("pkg:maven/com.google.guava/guava@28.2-jre", "repo1.maven.org"),
        ("pkg:pypi/Django@2.2.7", "pypi.org"),
        ("pkg:composer/symfony/http-foundation@5.3.0", "packagist.org"),
        ("pkg:gem/rspec-core@3.10.1", "rubygems.org"),
        ("pkg:cargo/rand@0.8.4", "crates.io"),
        ("pkg:cocoapods/Firebase@7.0.0", "cocoapod.org"),
        ("pkg:apk/alpine/curl@7.79.1-r0", "alpine-edge"),
        ("pkg:swift/github.com/yonaskolb/XcodeGen@2.34.0", "swiftpackageindex.com"),
        ("pkg:docker/library%2Falpine", "hub.docker.com"),
    ],
)
def test_purl_to_ecosystems_registry(purl, expected):
    assert purl_to_ecosystems_registry(PackageURL.from_string(purl)) == expected


@pytest.mark.parametrize(
    "purl, expected",
    [
        ("pkg:npm/%40my-namespace/my-package", "@my-namespace/my-package"),
        ("pkg:npm/my-package", "my-package"),
        ("pkg:maven/my-group:my-artifact", "my-group:my-artifact"),
        ("pkg:maven/my-artifact", "my-artifact"),
        (f"pkg:{GO}/example.com/foo/bar@v1.5.0", "example.com/foo/bar"),
        (f"pkg:{GO}/example.com/f.o_o/ba~r", "example.com/f.o_o/ba~r"),
        ("pkg:swift/github.com/yonaskolb/XcodeGen@1", "github.com/yonaskolb/XcodeGen"),
        ("pkg:apk/alpine/lf@30-r3", "lf"),
    ],
)
def test_purl_to_ecosystems_name(purl, expected):
    assert purl_to_ecosystems_name(PackageURL.from_string(purl)) == expected


def test_get_package_data(mock_http):
    mock_http.add(responses.GET, REGISTRIES, body=b"", status=200)
    purl = PackageURL.from_string("pkg:maven/org.springframework.boot/spring-boot-starter-jdb")

    response = get_package_data(purl)

    assert response.status_code == 200
    assert response.json200 is None
    assert len(mock_http.calls) == 1
    assert mock_http.calls[0].request.url == (
        "https://packages.ecosyste.ms/api/v1/registries/repo1.maven.org"
        "/packages/org.springframework.boot:spring-boot-starter-jdb"
    )


def test_get_package_data_decodes_json(mock_http):
    mock_http.add(responses.GET, REGISTRIES, json={"description": "description"})
    response = get_package_data(PackageURL.from_string("pkg:npm/lodash@4.17.21"))
    assert response.json200 == {"description": "description"}


def test_get_package_data_non_200_has_no_json(mock_http):
    mock_http.add(responses.GET, REGISTRIES, json={"error": "x"}, status=404)
    response = get_package_data(PackageURL.from_string("pkg:npm/lodash@4.17.21"))
    assert response.status_code == 404
    assert response.json200 is None


def test_get_package_version_data(mock_http):
    mock_http.add(
        responses.GET,
        re.compile(r"^https://packages\.ecosyste\.ms/api/v1/registries/.*/packages/.*/versions"),
        json={"licenses": "MIT"},
    )
    response = get_package_version_data(PackageURL.from_string("pkg:npm/lodash@4.17.21"))
    assert response.json200 == {"licenses": "MIT"}
    assert mock_http.calls[0].request.url.endswith("/versions/4.17.21")


def test_get_repo_data(mock_http):
    mock_http.add(
        responses.GET,
        "https://repos.ecosyste.ms/api/v1/repositories/lookup",
        body=b"",
        status=200,
        match=[matchers.query_param_matcher({"url": "https://example.com/example/repo"})],
    )

    response = get_repo_data("https://example.com/example/repo")

    assert response.status_code == 200
    assert len(mock_http.calls) == 1