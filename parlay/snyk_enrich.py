"""Enrich SBOM documents with Snyk links and known vulnerabilities."""

from __future__ import annotations

import json
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from functools import partial
from typing import Any, Callable
from urllib.parse import quote

from parlay.ecosystems_api import APIResponse
from parlay.purl import InvalidPurlError, PackageURL
from parlay.sbom import SBOMDocument, discover_cdx_components, purl_from_spdx_package
from parlay.snyk_api import (
    SNYK_VULNERABILITY_DB_WEB_URL,
    Config,
    SnykAPIError,
    auth_from_token,
    get_package_vulnerabilities,
    snyk_advisor_url,
    snyk_org_id,
    snyk_vuln_url,
)

logger = logging.getLogger(__name__)

_MAX_WORKERS = 20
_INT_RE = re.compile(r"^[+-]?[0-9]+$")
_TIMESTAMP_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.\d+)?(Z|[+-]\d{2}:\d{2})?$"
)

Issue = dict[str, Any]

_SEVERITIES = {
    "critical": "critical",
    "high": "high",
    "medium": "medium",
    "low": "low",
}

_METHODS = {
    "3.0": "CVSSv3",
    "3.1": "CVSSv31",
    "4.0": "CVSSv4",
}


def level_to_cdx_severity(level: str | None) -> str:
    """Map a Snyk severity level to a CycloneDX severity."""
    return _SEVERITIES.get(level or "", "unknown")


def version_to_cdx_method(version: str | None) -> str:
    """Map a CVSS version to a CycloneDX scoring method."""
    return _METHODS.get(version or "", "other")


def _rfc3339(value: Any) -> str | None:
    match = _TIMESTAMP_RE.match(str(value).strip())
    if match is None:
        return None
    base, zone = match.groups()
    if zone is None or zone == "Z":
        zone = "+00:00"
    try:
        moment = datetime.fromisoformat(base + zone)
    except ValueError:
        return None
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _fetch_issues(
    config: Config, auth, org_id, purl: PackageURL, label: str
) -> list[Issue] | None:
    try:
        response = get_package_vulnerabilities(config, purl, auth, org_id)
    except SnykAPIError as exc:
        logger.error(
            "Failed to fetch vulnerabilities for package %s (%s): %s",
            label,
            purl.to_string(),
            exc,
        )
        return None
    try:
        document = json.loads(response.body)
    except ValueError as exc:
        logger.error(
            "Failed to decode Snyk vulnerability response for %s (status %s): %s",
            label,
            response.status_code,
            exc,
        )
        return None
    data = document.get("data") if isinstance(document, dict) else None
    return data if isinstance(data, list) else None


# --- CycloneDX --------------------------------------------------------------


def _cdx_add_reference(component: dict[str, Any], url: str, comment: str) -> None:
    if url:
        component.setdefault("externalReferences", []).append(
            {"url": url, "comment": comment, "type": "Other"}
        )


def _enrich_cdx_advisor(config: Config, component: dict[str, Any], purl: PackageURL) -> None:
    _cdx_add_reference(component, snyk_advisor_url(purl), "Snyk Advisor")


def _enrich_cdx_vuln_db(config: Config, component: dict[str, Any], purl: PackageURL) -> None:
    _cdx_add_reference(component, snyk_vuln_url(purl), "Snyk Vulnerability DB")


_CDX_ENRICHERS: list[Callable[[Config, dict[str, Any], PackageURL], None]] = [
    _enrich_cdx_advisor,
    _enrich_cdx_vuln_db,
]


def _process_cdx_component(
    config: Config, auth, org_id, component: dict[str, Any]
) -> list[Issue] | None:
    label = component.get("bom-ref", "")
    try:
        purl = PackageURL.from_string(component.get("purl") or "")
    except InvalidPurlError as exc:
        logger.debug("Could not identify package %s: %s", label, exc)
        return None
    for enrich in _CDX_ENRICHERS:
        enrich(config, component, purl)
    return _fetch_issues(config, auth, org_id, purl, label)


def _cdx_rating(severity: dict[str, Any]) -> dict[str, Any] | None:
    score = severity.get("score")
    if score is None:
        return None
    source: dict[str, Any] = {"name": severity.get("source") or "Snyk"}
    if source["name"] == "Snyk":
        source["url"] = SNYK_VULNERABILITY_DB_WEB_URL
    rating: dict[str, Any] = {
        "source": source,
        "score": float(score),
        "severity": level_to_cdx_severity(severity.get("level")),
        "method": version_to_cdx_method(severity.get("version")),
    }
    if severity.get("vector"):
        rating["vector"] = severity["vector"]
    return rating


def _cdx_vulnerability(bom_ref: str, issue: Issue) -> dict[str, Any] | None:
    attributes = issue.get("attributes") or {}
    problems = attributes.get("problems")
    if problems is None:
        return None

    vuln: dict[str, Any] = {}
    if bom_ref:
        vuln["bom-ref"] = bom_ref
    if issue.get("id") is not None:
        vuln["id"] = issue["id"]
    if attributes.get("title") is not None:
        vuln["description"] = attributes["title"]
    if attributes.get("description") is not None:
        vuln["detail"] = attributes["description"]
    for key, target in (("created_at", "created"), ("updated_at", "updated")):
        if attributes.get(key) is not None:
            stamp = _rfc3339(attributes[key])
            if stamp is not None:
                vuln[target] = stamp

    for problem in problems:
        source = problem.get("source")
        problem_id = problem.get("id") or ""
        if source == "CWE":
            number = problem_id[4:]
            if _INT_RE.match(number):
                vuln.setdefault("cwes", []).append(int(number))
        elif source in ("CVE", "GHAS", "RHSA"):
            vuln.setdefault("references", []).append(
                {"id": problem_id, "source": {"name": source}}
            )

    for ref in (attributes.get("slots") or {}).get("references") or []:
        vuln.setdefault("advisories", []).append(
            {"title": ref.get("title", ""), "url": ref.get("url", "")}
        )

    for severity in attributes.get("severities") or []:
        rating = _cdx_rating(severity)
        if rating is not None:
            vuln.setdefault("ratings", []).append(rating)

    return vuln


def _enrich_cyclonedx(config: Config, bom: dict[str, Any]) -> None:
    auth = auth_from_token(config.api_token)
    try:
        org_id = snyk_org_id(config, auth)
    except SnykAPIError as exc:
        logger.error("Failed to infer preferred Snyk organization: %s", exc)
        return
    logger.debug("Inferred Snyk organization ID %s", org_id)

    components = discover_cdx_components(bom)
    logger.debug("Detected %d packages", len(components))
    if not components:
        return

    work = partial(_process_cdx_component, config, auth, org_id)
    with ThreadPoolExecutor(max_workers=_MAX_WORKERS) as pool:
        results = list(pool.map(work, components))

    vulns = [
        vuln
        for component, issues in zip(components, results)
        for issue in issues or []
        if (vuln := _cdx_vulnerability(component.get("bom-ref", ""), issue)) is not None
    ]
    logger.debug("Found %d vulnerabilities", len(vulns))
    if vulns:
        bom["vulnerabilities"] = vulns


# --- SPDX -------------------------------------------------------------------


def _spdx_add_reference(
    package: dict[str, Any], url: str, ref_type: str, comment: str
) -> None:
    if url:
        package.setdefault("externalRefs", []).append(
            {
                "referenceCategory": "OTHER",
                "referenceType": ref_type,
                "referenceLocator": url,
                "comment": comment,
            }
        )


def _enrich_spdx_advisor(config: Config, package: dict[str, Any], purl: PackageURL) -> None:
    _spdx_add_reference(package, snyk_advisor_url(purl), "advisory", "Snyk Advisor")


def _enrich_spdx_vuln_db(config: Config, package: dict[str, Any], purl: PackageURL) -> None:
    _spdx_add_reference(package, snyk_vuln_url(purl), "url", "Snyk Vulnerability DB")


_SPDX_ENRICHERS: list[Callable[[Config, dict[str, Any], PackageURL], None]] = [
    _enrich_spdx_advisor,
    _enrich_spdx_vuln_db,
]


def _process_spdx_package(
    config: Config, auth, org_id, package: dict[str, Any]
) -> list[Issue] | None:
    label = package.get("SPDXID", "")
    try:
        purl = purl_from_spdx_package(package)
    except InvalidPurlError:
        logger.debug("Could not identify package %s", label)
        return None
    for enrich in _SPDX_ENRICHERS:
        enrich(config, package, purl)
    return _fetch_issues(config, auth, org_id, purl, label)


def _enrich_spdx(config: Config, bom: dict[str, Any]) -> None:
    auth = auth_from_token(config.api_token)
    org_id = snyk_org_id(config, auth)

    packages = bom.get("packages") or []
    logger.debug("Detected %d packages", len(packages))
    if not packages:
        return

    work = partial(_process_spdx_package, config, auth, org_id)
    with ThreadPoolExecutor(max_workers=_MAX_WORKERS) as pool:
        results = list(pool.map(work, packages))

    for package, issues in zip(packages, results):
        for issue in issues or []:
            if issue.get("id") is None:
                continue
            ref: dict[str, Any] = {
                "referenceCategory": "SECURITY",
                "referenceType": "advisory",
                "referenceLocator": (
                    f"{SNYK_VULNERABILITY_DB_WEB_URL}/vuln/"
                    f"{quote(str(issue['id']), safe=':@&=+$!*()~')}"
                ),
            }
            title = (issue.get("attributes") or {}).get("title")
            if title is not None:
                ref["comment"] = title
            package.setdefault("externalRefs", []).append(ref)


def enrich_sbom(config: Config, doc: SBOMDocument) -> SBOMDocument:
    """Add Snyk links and vulnerabilities to a document and return it.

    Raises SnykAPIError when no token is configured, and for SPDX documents
    also when the organisation cannot be determined.
    """
    if doc.is_cyclonedx:
        _enrich_cyclonedx(config, doc.bom)
    elif doc.is_spdx:
        _enrich_spdx(config, doc.bom)
    return doc


class Service:
    """Snyk operations bound to one configuration."""

    def __init__(self, config: Config) -> None:
        self.config = config

    def enrich_sbom(self, doc: SBOMDocument) -> SBOMDocument:
        return enrich_sbom(self.config, doc)

    def get_package_vulnerabilities(self, purl: PackageURL) -> APIResponse:
        auth = auth_from_token(self.config.api_token)
        org_id = snyk_org_id(self.config, auth)
        return get_package_vulnerabilities(self.config, purl, auth, org_id)