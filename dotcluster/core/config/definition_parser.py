"""
Definition parser: reads ``cluster.toml`` into a Definition, and writes it back.

The file layout is::

    [settings]
    description = "bash configuration"
    url = "https://example.org/bash.git"
    work_tree_alias = "$HOME"
    include = [".bashrc"]
    exclude = []

    [[dependency]]
    name = "bash_ps1"
    url = "https://example.org/bash_ps1.git"
    include = ["ps1.sh"]

Parsing never touches the filesystem or the environment: the work tree
alias is returned exactly as written and expanded later by the loader.
"""

from __future__ import annotations

import json
import tomllib
from typing import Any

from pydantic import ValidationError

from dotcluster.core.models.definition import Definition


class DefinitionError(Exception):
    """Raised when a cluster definition cannot be parsed or is invalid."""


def parse_definition(raw: bytes | str) -> Definition:
    """Parse raw ``cluster.toml`` contents.

    Args:
        raw: File contents as bytes (UTF-8) or text.

    Returns:
        Validated Definition.

    Raises:
        DefinitionError: If the contents are not valid TOML or do not
            describe a well-formed definition.
    """
    if isinstance(raw, bytes):
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DefinitionError(f"definition is not valid UTF-8: {e}") from e
    else:
        text = raw

    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        raise DefinitionError(f"invalid TOML: {e}") from e

    settings = data.get("settings")
    if not isinstance(settings, dict):
        raise DefinitionError("missing [settings] table")

    dependencies = data.get("dependency", [])
    if not isinstance(dependencies, list):
        raise DefinitionError("[[dependency]] must be an array of tables")

    try:
        return Definition.model_validate(_to_model_data(settings, dependencies))
    except ValidationError as e:
        raise DefinitionError(_summarize(e)) from e


def _to_model_data(settings: dict[str, Any], dependencies: list[Any]) -> dict[str, Any]:
    """Map the TOML layout onto the Definition model fields."""
    include, exclude = _split_negated(
        settings.get("include", []), settings.get("exclude", [])
    )
    model: dict[str, Any] = {
        "description": settings.get("description"),
        "work_tree_alias": settings.get("work_tree_alias"),
        "include": include,
        "exclude": exclude,
        "remote": _remote(settings),
        "dependencies": [],
    }

    for dep in dependencies:
        if not isinstance(dep, dict):
            raise DefinitionError("each [[dependency]] entry must be a table")
        entry: dict[str, Any] = {"name": dep.get("name"), "remote": _remote(dep)}
        if "include" in dep:
            entry["include"] = _dependency_include(dep["include"])
        model["dependencies"].append(entry)

    return model


def _remote(table: dict[str, Any]) -> dict[str, Any] | None:
    url = table.get("url")
    if not url:
        return None
    return {"url": url, "branch": table.get("branch")}


def _split_negated(include: Any, exclude: Any) -> tuple[Any, Any]:
    """Move ``!pattern`` entries of the include list into the exclude list."""
    if not isinstance(include, list) or not isinstance(exclude, list):
        # Let pydantic report the type error.
        return include, exclude
    kept: list[Any] = []
    negated: list[Any] = []
    for rule in include:
        if isinstance(rule, str) and rule.startswith("!"):
            negated.append(rule[1:])
        else:
            kept.append(rule)
    return kept, [*exclude, *negated]


def _dependency_include(include: Any) -> Any:
    """A dependency's include override; it has no exclude list to negate into."""
    if isinstance(include, list):
        for rule in include:
            if isinstance(rule, str) and rule.startswith("!"):
                raise DefinitionError(
                    f"dependency include rule {rule!r}: negated rules belong in the "
                    "dependency's own exclude list"
                )
    return include


def _summarize(error: ValidationError) -> str:
    """Turn a pydantic error into a one-line message."""
    parts = []
    for err in error.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "definition"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


# ── Writing ─────────────────────────────────────────────────────


def render_definition(definition: Definition) -> str:
    """Render a Definition as ``cluster.toml`` text that parses back to it."""
    settings: dict[str, Any] = {
        "description": definition.description,
        "url": definition.remote.url if definition.remote else None,
        "branch": definition.remote.branch if definition.remote else None,
        "work_tree_alias": definition.work_tree_alias,
        "include": list(definition.include),
        "exclude": list(definition.exclude) or None,
    }
    lines = ["[settings]"]
    lines += [f"{key} = {_toml(value)}" for key, value in settings.items() if value is not None]

    for dep in definition.dependencies:
        lines += ["", "[[dependency]]", f"name = {_toml(dep.name)}"]
        if dep.remote:
            lines.append(f"url = {_toml(dep.remote.url)}")
            if dep.remote.branch:
                lines.append(f"branch = {_toml(dep.remote.branch)}")
        if dep.include is not None:
            lines.append(f"include = {_toml(list(dep.include))}")
    return "\n".join(lines) + "\n"


def _toml(value: str | list[str]) -> str:
    # JSON string escapes are valid TOML basic-string escapes.
    if isinstance(value, list):
        return "[" + ", ".join(json.dumps(item, ensure_ascii=False) for item in value) + "]"
    return json.dumps(value, ensure_ascii=False)
