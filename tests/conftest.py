"""
Shared test fixtures and configuration.
"""

import json
from pathlib import Path

import pytest

from dotcluster.adapters.mock import MockBackend


def definition_toml(
    include: list[str] | None = None,
    exclude: list[str] | None = None,
    deps: list | None = None,
    alias: str | Path | None = None,
    description: str | None = None,
    url: str | None = None,
) -> str:
    """Render a cluster.toml.

    ``deps`` entries are names, or dicts with name/url/include keys.
    """
    lines = ["[settings]"]
    if description is not None:
        lines.append(f"description = {json.dumps(description)}")
    if url is not None:
        lines.append(f"url = {json.dumps(url)}")
    if alias is not None:
        lines.append(f"work_tree_alias = {json.dumps(str(alias))}")
    lines.append(f"include = {json.dumps(include or [])}")
    if exclude:
        lines.append(f"exclude = {json.dumps(exclude)}")

    for dep in deps or []:
        if isinstance(dep, str):
            dep = {"name": dep}
        lines.append("")
        lines.append("[[dependency]]")
        for key, value in dep.items():
            lines.append(f"{key} = {json.dumps(value)}")
    return "\n".join(lines) + "\n"


@pytest.fixture
def store_root(tmp_path: Path) -> Path:
    """An empty store directory."""
    root = tmp_path / "store"
    root.mkdir()
    return root


@pytest.fixture
def home(tmp_path: Path) -> Path:
    """The work tree alias clusters deploy into."""
    path = tmp_path / "home"
    path.mkdir()
    return path


@pytest.fixture
def backend() -> MockBackend:
    return MockBackend()


@pytest.fixture
def add_cluster(store_root: Path, home: Path, backend: MockBackend):
    """Factory: add a valid cluster to the mock store.

    Usage: add_cluster("bash", include=[".bashrc"], deps=["bash_ps1"],
    files={".bashrc": "..."}).
    """

    def _add(
        name: str,
        include: list[str] | None = None,
        exclude: list[str] | None = None,
        deps: list | None = None,
        files: dict[str, str] | None = None,
        alias: str | Path | None = None,
        description: str | None = None,
    ) -> Path:
        text = definition_toml(
            include=include,
            exclude=exclude,
            deps=deps,
            alias=alias if alias is not None else home,
            description=description,
        )
        return backend.add_cluster(store_root, name, definition=text, files=files)

    return _add
