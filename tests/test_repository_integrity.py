"""Repository-level integrity checks."""

from __future__ import annotations

import re
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
CONFLICT_PATTERN = re.compile(r"^(<<<<<<<|=======|>>>>>>>)", re.MULTILINE)
IGNORED_PARTS = {".git", "__pycache__", ".mypy_cache", ".pytest_cache", ".venv"}
PACKAGES_PATTERN = re.compile(r"^packages\s*=\s*\[(?P<names>[^\]]*)\]", re.MULTILINE)


def _source_files() -> list[Path]:
    return [
        path
        for path in REPO_ROOT.rglob("*")
        if path.is_file() and not any(part in IGNORED_PARTS for part in path.parts)
    ]


def test_repository_has_no_merge_conflict_markers() -> None:
    """Ensure no files in the repo still contain git conflict markers."""

    offending_files: list[Path] = []
    for path in _source_files():
        contents = path.read_text(encoding="utf-8", errors="ignore")
        if CONFLICT_PATTERN.search(contents):
            offending_files.append(path.relative_to(REPO_ROOT))

    assert not offending_files, (
        "The following files still contain git conflict markers: "
        + ", ".join(str(path) for path in offending_files)
    )


def test_declared_packages_exist() -> None:
    """Every package listed for installation must be a directory of modules."""

    pyproject = (REPO_ROOT / "pyproject.toml").read_text(encoding="utf-8")
    match = PACKAGES_PATTERN.search(pyproject)
    assert match is not None

    names = re.findall(r'"([^"]+)"', match.group("names"))
    assert names
    for name in names:
        package_dir = REPO_ROOT.joinpath(*name.split("."))
        assert package_dir.is_dir(), name
        assert any(package_dir.glob("*.py")), name
