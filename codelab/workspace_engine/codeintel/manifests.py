"""Dependency manifest parsers.

Each parser takes the raw manifest text and returns ``Dependency`` records.
Malformed JSON / TOML raises ``ValueError`` (both decoder errors subclass it);
the indexer logs and skips such manifests.
"""

from __future__ import annotations

import json
import re
import tomllib
from collections.abc import Callable

from codelab.workspace_engine.models.enums import DependencySource, DependencyType
from codelab.workspace_engine.models.index import Dependency

# -- npm -----------------------------------------------------------------------


def parse_package_json(text: str) -> list[Dependency]:
    data = json.loads(text)
    if not isinstance(data, dict):
        msg = "package.json must contain an object"
        raise ValueError(msg)
    deps: list[Dependency] = []
    for key, dep_type in (("dependencies", DependencyType.PRODUCTION), ("devDependencies", DependencyType.DEVELOPMENT)):
        for name, version in (data.get(key) or {}).items():
            deps.append(Dependency(name=name, version=str(version), type=dep_type, source=DependencySource.NPM))
    return deps


# -- pip -----------------------------------------------------------------------

_REQUIREMENT = re.compile(r"^\s*([A-Za-z0-9][A-Za-z0-9._-]*)\s*(?:\[[^\]]*\])?\s*([^;#]*)")


def _parse_requirement(line: str, dep_type: DependencyType) -> Dependency | None:
    match = _REQUIREMENT.match(line)
    if match is None:
        return None
    spec = match.group(2).strip()
    if spec.startswith("==") and "," not in spec:
        spec = spec[2:].strip()
    return Dependency(name=match.group(1), version=spec or "*", type=dep_type, source=DependencySource.PIP)


def parse_requirements(text: str) -> list[Dependency]:
    deps: list[Dependency] = []
    for raw in text.splitlines():
        line = raw.split("#", 1)[0].strip()
        # Options (-r, -e, --index-url) and direct URLs are not named packages.
        if not line or line.startswith("-") or "://" in line:
            continue
        dep = _parse_requirement(line, DependencyType.PRODUCTION)
        if dep is not None:
            deps.append(dep)
    return deps


def parse_pyproject(text: str) -> list[Dependency]:
    data = tomllib.loads(text)
    project = data.get("project") or {}
    deps: list[Dependency] = []
    for line in project.get("dependencies") or []:
        dep = _parse_requirement(line, DependencyType.PRODUCTION)
        if dep is not None:
            deps.append(dep)
    for extra in (project.get("optional-dependencies") or {}).values():
        for line in extra:
            dep = _parse_requirement(line, DependencyType.DEVELOPMENT)
            if dep is not None:
                deps.append(dep)
    for group in (data.get("dependency-groups") or {}).values():
        for line in group:
            if isinstance(line, str):
                dep = _parse_requirement(line, DependencyType.DEVELOPMENT)
                if dep is not None:
                    deps.append(dep)
    return deps


# -- Go ------------------------------------------------------------------------

_GO_REQUIRE_BLOCK = re.compile(r"^require\s*\(([^)]*)\)", re.MULTILINE)
_GO_REQUIRE_SINGLE = re.compile(r"^require[ \t]+([^\s(]\S*)[ \t]+(\S+)", re.MULTILINE)
_GO_MODULE_LINE = re.compile(r"^(\S+)\s+(\S+)")


def parse_go_mod(text: str) -> list[Dependency]:
    deps: list[Dependency] = []
    for block in _GO_REQUIRE_BLOCK.finditer(text):
        for raw in block.group(1).splitlines():
            match = _GO_MODULE_LINE.match(raw.strip())
            if match and not match.group(1).startswith("//"):
                deps.append(Dependency(name=match.group(1), version=match.group(2), source=DependencySource.GO))
    for match in _GO_REQUIRE_SINGLE.finditer(text):
        deps.append(Dependency(name=match.group(1), version=match.group(2), source=DependencySource.GO))
    return deps


# -- Cargo ---------------------------------------------------------------------


def _cargo_version(spec: object) -> str:
    if isinstance(spec, str):
        return spec
    if isinstance(spec, dict):
        return str(spec.get("version", "*"))
    return "*"


def parse_cargo_toml(text: str) -> list[Dependency]:
    data = tomllib.loads(text)
    deps: list[Dependency] = []
    for key, dep_type in (
        ("dependencies", DependencyType.PRODUCTION),
        ("dev-dependencies", DependencyType.DEVELOPMENT),
        ("build-dependencies", DependencyType.DEVELOPMENT),
    ):
        for name, spec in (data.get(key) or {}).items():
            deps.append(
                Dependency(name=name, version=_cargo_version(spec), type=dep_type, source=DependencySource.CARGO)
            )
    return deps


MANIFEST_PARSERS: dict[str, Callable[[str], list[Dependency]]] = {
    "package.json": parse_package_json,
    "requirements.txt": parse_requirements,
    "pyproject.toml": parse_pyproject,
    "go.mod": parse_go_mod,
    "Cargo.toml": parse_cargo_toml,
}
"""Manifest file name -> parser, checked at the index root in this order."""
