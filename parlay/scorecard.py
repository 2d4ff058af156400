"""Link SBOM components to their OpenSSF Scorecard reports."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import requests

from parlay.ecosystems_api import get_package_data
from parlay.purl import InvalidPurlError, PackageURL
from parlay.sbom import SBOMDocument, discover_cdx_components, purl_from_spdx_package

logger = logging.getLogger(__name__)

SCORECARD_API = "https://api.securityscorecards.dev/projects/"
_MAX_WORKERS = 20
_TIMEOUT = 60
_FETCH_ERRORS = (requests.RequestException, ValueError)


def scorecard_url(repository_url: str) -> str:
    """Return the Scorecard API URL for an https repository URL."""
    return repository_url.replace("https://", SCORECARD_API)


def _repository_url(purl: PackageURL) -> str | None:
    try:
        response = get_package_data(purl)
    except _FETCH_ERRORS as exc:
        logger.debug("Failed to get package data for %s: %s", purl, exc)
        return None
    data = response.json200
    if not isinstance(data, dict):
        return None
    url = data.get("repository_url")
    return url if isinstance(url, str) and url else None


def _scorecard_available(url: str) -> bool:
    try:
        response = requests.get(url, timeout=_TIMEOUT)
    except requests.RequestException as exc:
        logger.debug("Failed to fetch scorecard %s: %s", url, exc)
        return False
    try:
        return response.status_code == 200
    finally:
        response.close()


def _find_scorecard(purl: PackageURL) -> str | None:
    repository = _repository_url(purl)
    if repository is None:
        return None
    url = scorecard_url(repository)
    return url if _scorecard_available(url) else None


def _enrich_cdx_component(component: dict[str, Any]) -> None:
    try:
        purl = PackageURL.from_string(component.get("purl") or "")
    except InvalidPurlError:
        return
    url = _find_scorecard(purl)
    if url is None:
        return
    component.setdefault("externalReferences", []).append(
        {"url": url, "comment": "OpenSSF Scorecard", "type": "other"}
    )


def _enrich_spdx_package(package: dict[str, Any]) -> None:
    try:
        purl = purl_from_spdx_package(package)
    except InvalidPurlError:
        return
    url = _find_scorecard(purl)
    if url is None:
        return
    package.setdefault("externalRefs", []).append(
        {
            "referenceCategory": "OTHER",
            "referenceType": "openssfscorecard",
            "referenceLocator": url,
        }
    )


def _run_all(func, items: list[dict[str, Any]]) -> None:
    if not items:
        return
    with ThreadPoolExecutor(max_workers=_MAX_WORKERS) as pool:
        list(pool.map(func, items))


def enrich_sbom(doc: SBOMDocument) -> SBOMDocument:
    """Add Scorecard references to every package that has one, and return doc."""
    if doc.is_cyclonedx:
        _run_all(_enrich_cdx_component, discover_cdx_components(doc.bom))
    elif doc.is_spdx:
        _run_all(_enrich_spdx_package, doc.bom.get("packages") or [])
    return doc