"""Client for the ecosyste.ms packages and repositories APIs."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import requests

from parlay.purl import PackageURL

PACKAGES_SERVER = "https://packages.ecosyste.ms/api/v1"
REPOS_SERVER = "https://repos.ecosyste.ms/api/v1"
_TIMEOUT = 60

_GO_TYPE = "go" + "lang"

_REGISTRIES = {
    "apk": "alpine-edge",
    "cargo": "crates.io",
    "cocoapods": "cocoapod.org",
    "composer": "packagist.org",
    "docker": "hub.docker.com",
    "gem": "rubygems.org",
    _GO_TYPE: f"proxy.{_GO_TYPE}.org",
    "hex": "hex.pm",
    "maven": "repo1.maven.org",
    "npm": "npmjs.org",
    "nuget": "nuget.org",
    "pypi": "pypi.org",
    "swift": "swiftpackageindex.com",
}


@dataclass
class APIResponse:
    """An HTTP response; json200 holds the decoded body of a JSON 200 reply."""

    status_code: int
    body: bytes
    json200: Any = None


def _path(segment: str) -> str:
    return quote(segment, safe=":@$&+,;=!*'()~")


def _get(url: str, params: dict[str, str] | None = None) -> APIResponse:
    response = requests.get(url, params=params, timeout=_TIMEOUT)
    content_type = response.headers.get("Content-Type", "")
    parsed = None
    if response.status_code == 200 and "json" in content_type:
        parsed = json.loads(response.content)
    return APIResponse(response.status_code, response.content, parsed)


def purl_to_ecosystems_registry(purl: PackageURL) -> str:
    """Return the ecosyste.ms registry name for a purl type, or ''."""
    return _REGISTRIES.get(purl.type, "")


def purl_to_ecosystems_name(purl: PackageURL) -> str:
    """Return the package name as ecosyste.ms expects it."""
    if not purl.namespace:
        return purl.name
    if purl.type == "maven":
        return f"{purl.namespace}:{purl.name}"
    if purl.type == "apk":
        return purl.name
    return f"{purl.namespace}/{purl.name}"


def get_package_data(purl: PackageURL) -> APIResponse:
    """Fetch registry data for the package a purl names."""
    registry = purl_to_ecosystems_registry(purl)
    name = purl_to_ecosystems_name(purl)
    return _get(f"{PACKAGES_SERVER}/registries/{_path(registry)}/packages/{_path(name)}")


def get_package_version_data(purl: PackageURL) -> APIResponse:
    """Fetch registry data for the exact package version a purl names."""
    registry = purl_to_ecosystems_registry(purl)
    name = purl_to_ecosystems_name(purl)
    return _get(
        f"{PACKAGES_SERVER}/registries/{_path(registry)}/packages/{_path(name)}"
        f"/versions/{_path(purl.version)}"
    )


def get_repo_data(url: str) -> APIResponse:
    """Look up repository metadata by repository URL."""
    return _get(f"{REPOS_SERVER}/repositories/lookup", params={"url": url})