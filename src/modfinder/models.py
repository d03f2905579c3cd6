"""Core modfinder data models."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Tuple

from modfinder.errors import invalid_argument

# Prerelease value stored for release versions. "~" sorts after every
# identifier character, so a release beats its prereleases in descending order.
RELEASE_SENTINEL = "~"

_SEMVER_RE = re.compile(
    r"^v?(?P<major>0|[1-9]\d*)\.(?P<minor>0|[1-9]\d*)\.(?P<patch>0|[1-9]\d*)"
    r"(?:-(?P<prerelease>[0-9A-Za-z.-]+))?"
    r"(?:\+[0-9A-Za-z.-]+)?$"
)


@dataclass(slots=True)
class License:
    type: str
    file_path: str


@dataclass(slots=True)
class Package:
    """One importable unit within a module version."""

    path: str
    suffix: str
    name: str
    synopsis: str = ""
    licenses: List[License] = field(default_factory=list)
    imports: List[str] = field(default_factory=list)


@dataclass(slots=True)
class Version:
    """One released version of a module and the packages it contains."""

    module_path: str
    version: str
    series_path: str
    commit_time: datetime
    readme_contents: str = ""
    packages: List[Package] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Version":
        try:
            packages = [
                Package(
                    path=p["path"],
                    suffix=p.get("suffix", ""),
                    name=p["name"],
                    synopsis=p.get("synopsis", ""),
                    licenses=[License(lic["type"], lic["file_path"]) for lic in p.get("licenses", [])],
                    imports=list(p.get("imports", [])),
                )
                for p in data.get("packages", [])
            ]
            module_path = data["module_path"]
            return cls(
                module_path=module_path,
                version=data["version"],
                series_path=data.get("series_path") or series_path_for(module_path),
                commit_time=_parse_time(data.get("commit_time")),
                readme_contents=data.get("readme_contents", ""),
                packages=packages,
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise invalid_argument(f"malformed version data: {exc!r}") from exc


@dataclass(slots=True)
class Document:
    """Searchable projection of a package within a version."""

    package_path: str
    package_suffix: str
    module_path: str
    series_path: str
    version: str
    name: str
    path_tokens: str
    synopsis: str
    readme_contents: str


@dataclass(slots=True)
class VersionInfo:
    """Version fields attached to a search hit."""

    module_path: str
    version: str
    commit_time: datetime


def _parse_time(value: Any) -> datetime:
    if value is None:
        return datetime.fromtimestamp(0, tz=timezone.utc)
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def series_path_for(module_path: str) -> str:
    """Strip a trailing ``/vN`` major-version suffix (N >= 2)."""
    head, _, tail = module_path.rpartition("/")
    if head and re.fullmatch(r"v([2-9]|[1-9]\d+)", tail):
        return head
    return module_path


def parse_semver(version: str) -> Tuple[int, int, int, str]:
    """Split a semantic version into (major, minor, patch, prerelease).

    Release versions get :data:`RELEASE_SENTINEL` as their prerelease.
    """
    match = _SEMVER_RE.match(version)
    if match is None:
        raise invalid_argument(f"not a semantic version: {version!r}")
    return (
        int(match["major"]),
        int(match["minor"]),
        int(match["patch"]),
        match["prerelease"] or RELEASE_SENTINEL,
    )


def validate_version(version: Version) -> None:
    """Check the structural fields required before anything is written."""
    reasons = []
    if not version.module_path:
        reasons.append("no module path")
    if not version.version:
        reasons.append("no version")
    elif _SEMVER_RE.match(version.version) is None:
        reasons.append(f"invalid version {version.version!r}")
    for pkg in version.packages:
        if not pkg.path:
            reasons.append("package with no path")
        elif not pkg.suffix and pkg.path != version.module_path:
            reasons.append(f"package {pkg.path!r} has no suffix")
    if reasons:
        raise invalid_argument(
            f"validate_version({version.module_path!r}, {version.version!r}): " + ", ".join(reasons)
        )
