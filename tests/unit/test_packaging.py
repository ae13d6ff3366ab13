"""
test_packaging.py - Unit tests for the project metadata in pyproject.toml
"""

import re
from pathlib import Path

import pytest

tomllib = pytest.importorskip("tomllib")

ROOT = Path(__file__).resolve().parents[2]

# Import name -> distribution name on the index
DISTRIBUTIONS = {
    'numpy': 'numpy',
    'scipy': 'scipy',
    'loguru': 'loguru',
}


@pytest.fixture(scope="module")
def project():
    with open(ROOT / "pyproject.toml", "rb") as fh:
        return tomllib.load(fh)['project']


def _third_party_imports():
    pattern = re.compile(r"^(?:from|import) (\w+)", re.MULTILINE)
    found = set()
    for path in (ROOT / "slot_economy").glob("*.py"):
        found.update(pattern.findall(path.read_text()))
    return found & set(DISTRIBUTIONS)


class TestProjectMetadata:
    """Tests for the [project] table."""

    def test_readme_exists_when_declared(self, project):
        readme = project.get('readme')
        if readme is None:
            return
        name = readme if isinstance(readme, str) else readme['file']
        assert (ROOT / name).is_file()

    def test_imported_libraries_are_declared(self, project):
        declared = {
            re.split(r"[<>=!~\[; ]", dep, maxsplit=1)[0].lower()
            for dep in project['dependencies']
        }
        for module in _third_party_imports():
            assert DISTRIBUTIONS[module] in declared, module

    def test_test_tools_in_extra(self, project):
        extra = project['optional-dependencies']['test']
        assert {"pytest", "hypothesis"} <= {re.split(r"[<>=!~\[; ]", d, maxsplit=1)[0] for d in extra}
