"""Keep Playwright out of the unit test suite."""

import ast
from pathlib import Path

import pytest

TESTS_ROOT = Path(__file__).parent

# Test modules allowed to import playwright; they carry e2e-marked tests
E2E_TEST_FILES: set[str] = {"test_browser.py"}


def _imported_packages(path: Path) -> set[str]:
    tree = ast.parse(path.read_text(encoding="utf-8"))
    packages: set[str] = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            packages.update(alias.name.split(".")[0] for alias in node.names)
        elif isinstance(node, ast.ImportFrom) and node.module and node.level == 0:
            packages.add(node.module.split(".")[0])
    return packages


@pytest.mark.unit
@pytest.mark.parametrize(
    "test_file",
    sorted(path.name for path in TESTS_ROOT.glob("test_*.py") if path.name not in E2E_TEST_FILES),
)
def test_no_playwright_import(test_file: str) -> None:
    """Test modules outside E2E_TEST_FILES must not import playwright."""
    assert "playwright" not in _imported_packages(TESTS_ROOT / test_file)


@pytest.mark.unit
@pytest.mark.parametrize("test_file", sorted(E2E_TEST_FILES))
def test_e2e_files_carry_e2e_marker(test_file: str) -> None:
    path = TESTS_ROOT / test_file
    assert path.exists()
    assert "pytest.mark.e2e" in path.read_text(encoding="utf-8")
