# parlay

A library that adds information to Software Bills of Materials (SBOMs).

`parlay` reads a CycloneDX 1.4 document (JSON or XML) or an SPDX 2.3 document
(JSON). It can then add details to each package from three sources:

* **ecosyste.ms**: description, homepage, registry, repository and
  documentation links, first and latest release dates, repository topics,
  whether the repository is archived, owner location, author and supplier, and
  licences for the exact package version. When the version has no licence, the
  package's latest licences are used.
* **OpenSSF Scorecard**: a link to the project's Scorecard. The link is added
  only when the Scorecard API answers with status 200.
* **Snyk**: links to Snyk Advisor and the Snyk Vulnerability DB, plus the known
  vulnerabilities of each package.

Packages are identified by their Package URL (purl). A component with no
usable purl is left as it is. A failed lookup for one package is logged
through the standard `logging` module, and that package is skipped.

Documents are held as plain dictionaries (`SBOMDocument.bom`) that mirror the
JSON structure. XML input is converted to that same structure.

## Installing

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Reading and writing documents

```python
from parlay.sbom import decode_sbom_document, identify_sbom_format

with open("bom.json", "rb") as fh:
    data = fh.read()

print(identify_sbom_format(data))  # e.g. "CycloneDX 1.4 JSON"
doc = decode_sbom_document(data)

with open("enriched.json", "wb") as out:
    doc.encode(out)
```

The format is detected from marker strings in the document:

* `bomFormat` and `CycloneDX` mark CycloneDX JSON.
* `xmlns` and `cyclonedx` mark CycloneDX XML.
* `SPDX-2.3` and `SPDXRef-DOCUMENT` mark SPDX 2.3 JSON.

Input that is not recognised, or that cannot be decoded, raises `SBOMError`.
`SBOMDocument.encode(stream)` writes the document in the format it was read
in. It accepts a text stream or a binary stream.

Helpers in `parlay.sbom`:

* `discover_cdx_components(bom)` returns the metadata component and every
  component, including nested ones.
* `purl_from_spdx_package(package)` returns the first `purl` external
  reference of an SPDX package as a `PackageURL`.

## Package URLs

`parlay.purl.PackageURL.from_string(text)` parses a purl. Malformed input
raises `InvalidPurlError`, which is a `ValueError`.
`PackageURL.to_string()` renders the canonical form.

## Enriching with ecosyste.ms

```python
from parlay import ecosystems_enrich

ecosystems_enrich.enrich_sbom(doc)
```

CycloneDX components are looked up concurrently, with up to 20 at a time.
SPDX packages are looked up one after another. For CycloneDX, licences are
written as an expression such as `(MIT OR Apache-2.0)`. For SPDX, they are
written to `licenseConcluded` as a comma-separated list.

The lower-level lookups are in `parlay.ecosystems_api`:
`get_package_data(purl)`, `get_package_version_data(purl)` and
`get_repo_data(url)`. Each returns an `APIResponse`, whose `json200` holds the
decoded body of a JSON reply with status 200. To map a purl onto the names
that ecosyste.ms uses, call `purl_to_ecosystems_registry(purl)` and
`purl_to_ecosystems_name(purl)`.

## Adding OpenSSF Scorecard links

```python
from parlay import scorecard

scorecard.enrich_sbom(doc)
```

Each package's repository URL comes from ecosyste.ms. `scorecard_url()`
rewrites that URL into the Scorecard API URL. CycloneDX components get an
external reference of type `other`. SPDX packages get a reference of category
`OTHER` and type `openssfscorecard`.

## Adding Snyk data

A Snyk API token is required.

```python
from parlay import snyk_api, snyk_enrich

config = snyk_api.Config(api_token="token")
snyk_enrich.enrich_sbom(config, doc)
```

`snyk_api.default_config()` returns a `Config` that points at the public Snyk
API and has no token set.

Errors are reported as follows:

* A missing token raises `SnykAPIError`.
* For SPDX documents, failing to find the user's default organisation also
  raises `SnykAPIError`.
* For CycloneDX documents, that failure is logged and the document is left
  unchanged.

CycloneDX vulnerabilities are collected into the document's
`vulnerabilities`, with CWEs, references, advisories and ratings. SPDX packages
get one `SECURITY`/`advisory` external reference per issue.

`snyk_enrich.Service(config)` keeps a configuration for repeated use. It has
two methods, `enrich_sbom(doc)` and `get_package_vulnerabilities(purl)`.

The module-level functions in `parlay.snyk_api` are:

* `auth_from_token`
* `snyk_org_id`
* `snyk_advisor_url`
* `snyk_vuln_url`
* `get_package_vulnerabilities`
* `parse_rate_limit_header`

Requests that fail or are rate-limited are retried up to 20 times. Between
attempts, the client waits as long as the `X-RateLimit-Reset` header asks.

Each enrichment step changes the document in place and returns it. The steps
can be run in any order before the document is encoded.

## What this package does not do

* It has no command-line program. It is used as a library from Python code.
* It does not validate documents against the CycloneDX or SPDX schemas.
* It does not cache lookups. Every run queries the remote services again.