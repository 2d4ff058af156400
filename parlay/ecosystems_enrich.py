"""Enrich SBOM documents with package metadata from ecosyste.ms."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable
from urllib.parse import urlsplit

import requests

from parlay.ecosystems_api import get_package_data, get_package_version_data
from parlay.purl import InvalidPurlError, PackageURL
from parlay.sbom import SBOMDocument, discover_cdx_components, purl_from_spdx_package

logger = logging.getLogger(__name__)

_MAX_WORKERS = 20
_FETCH_ERRORS = (requests.RequestException, ValueError)

Component = dict[str, Any]
PackageData = dict[str, Any]


def licenses_from_ecosystems(
    version_data: PackageData | None, package_data: PackageData | None
) -> list[str]:
    """Return the version's licenses, falling back to the package's latest ones."""
    versioned = (version_data or {}).get("licenses") or ""
    found = [part.strip() for part in str(versioned).split(",") if part.strip()]
    if found:
        return found
    latest = (package_data or {}).get("normalized_licenses") or []
    return [str(item).strip() for item in latest if item and str(item).strip()]


def license_expression_from_ecosystems(
    version_data: PackageData | None, package_data: PackageData | None
) -> str:
    """Return a license expression such as '(MIT)', or '' when none is known."""
    licenses = licenses_from_ecosystems(version_data, package_data)
    if not licenses:
        return ""
    return "(" + " OR ".join(licenses) + ")"


def _is_valid_url(ref: str) -> bool:
    if any(ord(ch) < 0x20 or ord(ch) == 0x7F for ch in ref):
        return False
    try:
        urlsplit(ref)
    except ValueError:
        return False
    return True


def _rfc3339(value: Any) -> str | None:
    if isinstance(value, datetime):
        moment = value
    else:
        try:
            moment = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _add_property(component: Component, name: str, value: str) -> None:
    component.setdefault("properties", []).append({"name": name, "value": value})


def _owner_record(data: PackageData) -> dict[str, Any] | None:
    meta = data.get("repo_metadata")
    if not isinstance(meta, dict):
        return None
    record = meta.get("owner_record")
    return record if isinstance(record, dict) else None


def enrich_cdx_description(component: Component, data: PackageData) -> None:
    if data.get("description") is not None:
        component["description"] = data["description"]


def enrich_cdx_license(
    component: Component, version_data: PackageData, package_data: PackageData
) -> None:
    expression = license_expression_from_ecosystems(version_data, package_data)
    if expression:
        component["licenses"] = [{"expression": expression}]


def enrich_external_reference(component: Component, ref: str | None, ref_type: str) -> None:
    """Append an external reference when ref is a parseable URL."""
    if ref is None or not isinstance(ref, str) or not _is_valid_url(ref):
        return
    component.setdefault("externalReferences", []).append({"url": ref, "type": ref_type})


def enrich_cdx_homepage(component: Component, data: PackageData) -> None:
    enrich_external_reference(component, data.get("homepage"), "website")


def enrich_cdx_registry_url(component: Component, data: PackageData) -> None:
    enrich_external_reference(component, data.get("registry_url"), "distribution")


def _enrich_cdx_repository_url(component: Component, data: PackageData) -> None:
    enrich_external_reference(component, data.get("repository_url"), "vcs")


def _enrich_cdx_documentation_url(component: Component, data: PackageData) -> None:
    enrich_external_reference(component, data.get("documentation_url"), "documentation")


def _enrich_cdx_first_release_published_at(component: Component, data: PackageData) -> None:
    value = data.get("first_release_published_at")
    if value is None:
        return
    timestamp = _rfc3339(value)
    if timestamp is not None:
        _add_property(component, "ecosystems:first_release_published_at", timestamp)


def enrich_cdx_latest_release_published_at(component: Component, data: PackageData) -> None:
    value = data.get("latest_release_published_at")
    if value is None:
        return
    timestamp = _rfc3339(value)
    if timestamp is not None:
        _add_property(component, "ecosystems:latest_release_published_at", timestamp)


def _enrich_cdx_repo_archived(component: Component, data: PackageData) -> None:
    meta = data.get("repo_metadata")
    if isinstance(meta, dict) and meta.get("archived") is True:
        _add_property(component, "ecosystems:repository_archived", "true")


def enrich_cdx_location(component: Component, data: PackageData) -> None:
    record = _owner_record(data)
    if record is not None and isinstance(record.get("location"), str):
        _add_property(component, "ecosystems:owner_location", record["location"])


def _enrich_cdx_topics(component: Component, data: PackageData) -> None:
    meta = data.get("repo_metadata")
    if not isinstance(meta, dict) or not isinstance(meta.get("topics"), list):
        return
    for topic in meta["topics"]:
        if isinstance(topic, str):
            _add_property(component, "ecosystems:topic", topic)


def _enrich_cdx_author(component: Component, data: PackageData) -> None:
    record = _owner_record(data)
    if record is not None and isinstance(record.get("name"), str):
        component["author"] = record["name"]


def _enrich_cdx_supplier(component: Component, data: PackageData) -> None:
    record = _owner_record(data)
    if record is None or not isinstance(record.get("name"), str):
        return
    supplier: dict[str, Any] = {"name": record["name"]}
    website = record.get("website")
    if isinstance(website, str):
        supplier["url"] = [part.strip() for part in website.split(", ")]
    component["supplier"] = supplier


_CDX_PACKAGE_ENRICHERS: list[Callable[[Component, PackageData], None]] = [
    enrich_cdx_description,
    enrich_cdx_homepage,
    enrich_cdx_registry_url,
    _enrich_cdx_repository_url,
    _enrich_cdx_documentation_url,
    _enrich_cdx_first_release_published_at,
    enrich_cdx_latest_release_published_at,
    _enrich_cdx_repo_archived,
    enrich_cdx_location,
    _enrich_cdx_topics,
    _enrich_cdx_author,
    _enrich_cdx_supplier,
]

_CDX_VERSION_ENRICHERS: list[Callable[[Component, PackageData, PackageData], None]] = [
    enrich_cdx_license,
]


def _enrich_cdx_component(component: Component) -> None:
    bom_ref = component.get("bom-ref", "")
    try:
        purl = PackageURL.from_string(component.get("purl") or "")
    except InvalidPurlError as exc:
        logger.debug("Skipping package %s: no usable PackageURL (%s)", bom_ref, exc)
        return

    try:
        package_resp = get_package_data(purl)
    except _FETCH_ERRORS as exc:
        logger.debug("Skipping package %s: failed to get package data (%s)", bom_ref, exc)
        return
    package_data = package_resp.json200
    if package_data is None:
        logger.debug("Skipping package %s: no data on ecosyste.ms response", bom_ref)
        return

    for enrich in _CDX_PACKAGE_ENRICHERS:
        enrich(component, package_data)

    try:
        version_resp = get_package_version_data(purl)
    except _FETCH_ERRORS as exc:
        logger.debug(
            "Skipping package version enrichment %s: failed to get data (%s)", bom_ref, exc
        )
        return
    version_data = version_resp.json200
    if version_data is None:
        logger.debug(
            "Skipping package version enrichment %s: no data on ecosyste.ms response", bom_ref
        )
        return

    for enrich_version in _CDX_VERSION_ENRICHERS:
        enrich_version(component, version_data, package_data)


def enrich_cdx(bom: dict[str, Any]) -> None:
    """Enrich every CycloneDX component, nested ones included, in place."""
    components = discover_cdx_components(bom)
    logger.debug("Detected %d packages", len(components))
    if not components:
        return
    with ThreadPoolExecutor(max_workers=_MAX_WORKERS) as pool:
        list(pool.map(_enrich_cdx_component, components))


def _enrich_spdx_supplier(package: dict[str, Any], data: PackageData) -> None:
    record = _owner_record(data)
    if record is None:
        return
    name = record.get("name")
    if isinstance(name, str) and name:
        package["supplier"] = f"Organization: {name}"


def _enrich_spdx_license(
    package: dict[str, Any], version_data: PackageData, package_data: PackageData
) -> None:
    licenses = licenses_from_ecosystems(version_data, package_data)
    if licenses:
        package["licenseConcluded"] = ",".join(licenses)


def _enrich_spdx_homepage(package: dict[str, Any], data: PackageData) -> None:
    if data.get("homepage") is not None:
        package["homepage"] = data["homepage"]


def _enrich_spdx_description(package: dict[str, Any], data: PackageData) -> None:
    if data.get("description") is not None:
        package["description"] = data["description"]


def enrich_spdx(bom: dict[str, Any]) -> None:
    """Enrich every SPDX package that carries a purl, in place."""
    packages = bom.get("packages") or []
    logger.debug("Detected %d packages", len(packages))

    for package in packages:
        try:
            purl = purl_from_spdx_package(package)
            package_resp = get_package_data(purl)
        except (InvalidPurlError, *_FETCH_ERRORS):
            continue
        package_data = package_resp.json200
        if package_data is None:
            continue

        _enrich_spdx_description(package, package_data)
        _enrich_spdx_homepage(package, package_data)
        _enrich_spdx_supplier(package, package_data)

        try:
            version_resp = get_package_version_data(purl)
        except _FETCH_ERRORS:
            continue
        version_data = version_resp.json200
        if version_data is None:
            continue

        _enrich_spdx_license(package, version_data, package_data)


def enrich_sbom(doc: SBOMDocument) -> SBOMDocument:
    """Enrich a CycloneDX or SPDX document with ecosyste.ms data and return it."""
    if doc.is_cyclonedx:
        enrich_cdx(doc.bom)
    elif doc.is_spdx:
        enrich_spdx(doc.bom)
    return doc