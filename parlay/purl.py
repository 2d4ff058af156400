"""Package URL (purl) parsing and formatting."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from urllib.parse import quote, unquote

_TYPE_RE = re.compile(r"^[a-z.+-][a-z0-9.+-]*$")
_LOWERCASE_NAME_TYPES = {"bitbucket", "github"}


class InvalidPurlError(ValueError):
    """Raised when a string is not a usable package URL."""


def _split_right(text: str, sep: str) -> tuple[str, str]:
    if sep in text:
        head, tail = text.rsplit(sep, 1)
        return head, tail
    return text, ""


def _parse_qualifiers(text: str) -> dict[str, str]:
    qualifiers: dict[str, str] = {}
    for pair in filter(None, text.split("&")):
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise InvalidPurlError(f"invalid qualifier {pair!r}")
        value = unquote(value)
        if value:
            qualifiers[key.lower()] = value
    return qualifiers


def _parse_subpath(text: str) -> str:
    segments = (unquote(s) for s in text.strip("/").split("/"))
    return "/".join(s for s in segments if s not in ("", ".", ".."))


@dataclass
class PackageURL:
    """A parsed package URL."""

    type: str
    name: str
    namespace: str = ""
    version: str = ""
    qualifiers: dict[str, str] = field(default_factory=dict)
    subpath: str = ""

    @classmethod
    def from_string(cls, text: str) -> "PackageURL":
        """Parse a purl string, raising InvalidPurlError on malformed input."""
        if not text.startswith("pkg:"):
            raise InvalidPurlError(f"purl is missing the 'pkg:' scheme: {text!r}")
        rest = text[len("pkg:"):]
        rest, subpath = _split_right(rest, "#")
        rest, qualifier_text = _split_right(rest, "?")

        rest = rest.strip("/")
        purl_type, sep, remainder = rest.partition("/")
        if not sep:
            raise InvalidPurlError(f"purl is missing a name: {text!r}")
        purl_type = purl_type.lower()
        if not _TYPE_RE.match(purl_type):
            raise InvalidPurlError(f"invalid purl type {purl_type!r}")

        version = ""
        if "@" in remainder:
            remainder, version = remainder.rsplit("@", 1)
            version = unquote(version)

        remainder = remainder.strip("/")
        namespace_text, _, name = remainder.rpartition("/")
        name = unquote(name)
        if not name:
            raise InvalidPurlError(f"purl is missing a name: {text!r}")
        namespace = "/".join(
            unquote(seg) for seg in namespace_text.split("/") if seg
        )

        if purl_type == "pypi":
            name = name.lower().replace("_", "-")
        elif purl_type in _LOWERCASE_NAME_TYPES:
            name = name.lower()
            namespace = namespace.lower()

        return cls(
            type=purl_type,
            name=name,
            namespace=namespace,
            version=version,
            qualifiers=_parse_qualifiers(qualifier_text),
            subpath=_parse_subpath(subpath) if subpath else "",
        )

    def to_string(self) -> str:
        """Render the canonical purl string."""
        parts = ["pkg:", self.type, "/"]
        if self.namespace:
            parts.append(
                "/".join(quote(seg, safe=":") for seg in self.namespace.split("/"))
            )
            parts.append("/")
        parts.append(quote(self.name, safe=":"))
        if self.version:
            parts.append("@" + quote(self.version, safe=":"))
        if self.qualifiers:
            parts.append(
                "?"
                + "&".join(
                    f"{key}={quote(value, safe=':/')}"
                    for key, value in sorted(self.qualifiers.items())
                )
            )
        if self.subpath:
            parts.append(
                "#" + "/".join(quote(seg, safe=":") for seg in self.subpath.split("/"))
            )
        return "".join(parts)

    def __str__(self) -> str:
        return self.to_string()