"""Read CycloneDX and SPDX SBOMs and enrich them with ecosyste.ms metadata, Scorecard links and Snyk data."""

__version__ = "0.1.0"

__all__ = [
    "ecosystems_api",
    "ecosystems_enrich",
    "purl",
    "sbom",
    "scorecard",
    "snyk_api",
    "snyk_enrich",
]