"""Tests that every third-party import is a declared dependency."""

import ast
import re
import sys
from importlib import metadata
from pathlib import Path

import pytest

import repo_atlas

PACKAGE_DIR = Path(repo_atlas.__file__).parent

# Import name -> distribution name, where they differ
DISTRIBUTIONS = {"tomllib": "tomli"}


def third_party_imports():
    found = set()
    for path in PACKAGE_DIR.rglob("*.py"):
        tree = ast.parse(path.read_text(encoding="utf-8"))
        for node in ast.walk(tree):
            if isinstance(node, ast.Import):
                names = [alias.name for alias in node.names]
            elif isinstance(node, ast.ImportFrom) and node.level == 0 and node.module:
                names = [node.module]
            else:
                continue
            for name in names:
                top = name.split(".")[0]
                if top != "repo_atlas" and top not in sys.stdlib_module_names:
                    found.add(DISTRIBUTIONS.get(top, top))
    return found


def declared_requirements():
    try:
        requires = metadata.requires("repo-atlas") or []
    except metadata.PackageNotFoundError:
        pytest.skip("repo-atlas is not installed")
    return {
        re.split(r"[\s<>=!~;\[]", req, maxsplit=1)[0].lower()
        for req in requires
        if "extra ==" not in req
    }


@pytest.mark.skipif(sys.version_info < (3, 10), reason="needs sys.stdlib_module_names")
class TestDependencies:
    def test_direct_imports_are_declared(self):
        missing = third_party_imports() - declared_requirements()
        assert not missing, f"imported but not in install_requires: {sorted(missing)}"

    def test_cli_libraries_declared(self):
        assert {"click", "typer", "rich"} <= declared_requirements()
