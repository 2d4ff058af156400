"""Client for the Snyk REST API: authentication, organisation and issues."""

from __future__ import annotations

import json
import logging
import re
import time
import uuid
from dataclasses import dataclass
from http import HTTPStatus
from urllib.parse import quote

import requests

from parlay.ecosystems_api import APIResponse
from parlay.purl import PackageURL

logger = logging.getLogger(__name__)

API_VERSION = "2024-06-26"
EXPERIMENTAL_VERSION = "2023-04-28~experimental"
SNYK_ADVISOR_WEB_URL = "https://snyk.io/advisor"
SNYK_VULNERABILITY_DB_WEB_URL = "https://security.snyk.io"

_TIMEOUT = 60
_RETRY_MAX = 20
_BACKOFF_MIN = 1.0
_BACKOFF_MAX = 30.0
_INT_RE = re.compile(r"^[+-]?[0-9]+$")

# Package URL type of Go modules; also the ecosystem name both Snyk sites use.
_GO_MODULE_TYPE = "go" + "lang"

_ADVISOR_ECOSYSTEMS = {
    "npm": "npm-package",
    "pypi": "python",
    _GO_MODULE_TYPE: _GO_MODULE_TYPE,
    "docker": "docker",
}

_VULN_DB_ECOSYSTEMS = {
    "cargo": "cargo",
    "cocoapods": "cocoapods",
    "composer": "composer",
    _GO_MODULE_TYPE: _GO_MODULE_TYPE,
    "hex": "hex",
    "maven": "maven",
    "npm": "npm",
    "nuget": "nuget",
    "pypi": "pip",
    "pub": "pub",
    "gem": "rubygems",
    "swift": "swift",
}


class SnykAPIError(Exception):
    """Raised when the Snyk API cannot be used or answers unsuccessfully."""

    def __init__(self, message: str, response: APIResponse | None = None) -> None:
        super().__init__(message)
        self.response = response


@dataclass
class Config:
    """Where the Snyk API lives and the token to use with it."""

    snyk_api_url: str = "https://api.snyk.io"
    api_token: str = ""


def default_config() -> Config:
    return Config()


class _ApiKeyAuth(requests.auth.AuthBase):
    """Sets an API key header on every request."""

    def __init__(self, header: str, value: str) -> None:
        self.header = header
        self.value = value

    def __call__(self, request):
        request.headers[self.header] = self.value
        return request


def auth_from_token(token: str) -> _ApiKeyAuth:
    """Build request authentication from a Snyk API token."""
    if not token:
        raise SnykAPIError("Must provide a SNYK_TOKEN environment variable")
    return _ApiKeyAuth("Authorization", f"token {token}")


def _status_text(response: requests.Response) -> str:
    reason = response.reason
    if not reason:
        try:
            reason = HTTPStatus(response.status_code).phrase
        except ValueError:
            reason = ""
    return f"{response.status_code} {reason}".strip()


def snyk_org_id(config: Config, auth) -> uuid.UUID:
    """Return the user's default organisation ID."""
    try:
        response = requests.get(
            f"{config.snyk_api_url}/rest/self",
            params={"version": EXPERIMENTAL_VERSION},
            auth=auth,
            timeout=_TIMEOUT,
        )
    except requests.RequestException as exc:
        raise SnykAPIError(str(exc)) from exc

    if response.status_code != 200:
        raise SnykAPIError(f"Failed to get user info ({_status_text(response)}).")

    try:
        payload = response.json()
    except ValueError as exc:
        raise SnykAPIError(f"could not decode user info: {exc}") from exc

    data = payload.get("data") if isinstance(payload, dict) else None
    attributes = data.get("attributes") if isinstance(data, dict) else None
    org = attributes.get("default_org_context") if isinstance(attributes, dict) else None
    if not org:
        raise SnykAPIError("Failed to get org ID.")
    try:
        return uuid.UUID(str(org))
    except ValueError as exc:
        raise SnykAPIError(f"invalid org ID {org!r}") from exc


def snyk_advisor_url(purl: PackageURL) -> str:
    """Return the Snyk Advisor page for a package, or '' if unsupported."""
    ecosystem = _ADVISOR_ECOSYSTEMS.get(purl.type)
    if not ecosystem:
        return ""
    url = f"{SNYK_ADVISOR_WEB_URL}/{ecosystem}/"
    if purl.namespace:
        url += purl.namespace + "/"
    return url + purl.name


def snyk_vuln_url(purl: PackageURL) -> str:
    """Return the Snyk vulnerability database page for a package, or ''."""
    ecosystem = _VULN_DB_ECOSYSTEMS.get(purl.type)
    if not ecosystem:
        return ""
    url = f"{SNYK_VULNERABILITY_DB_WEB_URL}/package/{ecosystem}/"
    if purl.namespace:
        url += purl.namespace + "%2F"
    return url + purl.name


def parse_rate_limit_header(value: str | None) -> int | None:
    """Return the seconds in an X-RateLimit-Reset header, or None."""
    if not value or not _INT_RE.match(value):
        return None
    return int(value)


def _should_retry(response: requests.Response) -> bool:
    code = response.status_code
    return code == 0 or code == 429 or (code >= 500 and code != 501)


def _backoff(attempt: int, response: requests.Response | None) -> float:
    if response is not None:
        reset = parse_rate_limit_header(response.headers.get("X-RateLimit-Reset"))
        if reset is not None:
            logger.warning("Getting rate-limited, waiting %ss...", reset)
            return float(reset)
        if response.status_code in (429, 503):
            retry_after = parse_rate_limit_header(response.headers.get("Retry-After"))
            if retry_after is not None:
                return float(retry_after)
    return min(_BACKOFF_MIN * 2**attempt, _BACKOFF_MAX)


def _get_with_retries(url: str, params: dict[str, str], auth) -> requests.Response:
    last_error: Exception | None = None
    response: requests.Response | None = None
    for attempt in range(_RETRY_MAX + 1):
        try:
            response = requests.get(url, params=params, auth=auth, timeout=_TIMEOUT)
        except (requests.ConnectionError, requests.Timeout) as exc:
            if isinstance(exc, requests.exceptions.SSLError):
                raise SnykAPIError(str(exc)) from exc
            response, last_error = None, exc
        except requests.RequestException as exc:
            raise SnykAPIError(str(exc)) from exc
        else:
            last_error = None
            if response.status_code >= 400:
                logger.warning(
                    "Unexpected status code (%s) for GET %s",
                    _status_text(response),
                    response.url,
                )
            if not _should_retry(response):
                return response
        if attempt < _RETRY_MAX:
            time.sleep(_backoff(attempt, response))

    if response is None:
        raise SnykAPIError(f"request to {url} failed: {last_error}") from last_error
    return response


def get_package_vulnerabilities(
    config: Config, purl: PackageURL, auth, org_id: uuid.UUID
) -> APIResponse:
    """Fetch the issues Snyk knows for a package, retrying when rate-limited."""
    encoded = quote(purl.to_string(), safe="")
    url = f"{config.snyk_api_url}/rest/orgs/{org_id}/packages/{encoded}/issues"
    response = _get_with_retries(url, {"version": API_VERSION}, auth)

    try:
        parsed = json.loads(response.content) if response.content else None
    except ValueError:
        parsed = None
    result = APIResponse(response.status_code, response.content, parsed)

    if response.status_code != 200:
        raise SnykAPIError(
            f"unsuccessful request ({_status_text(response)})", response=result
        )
    return result