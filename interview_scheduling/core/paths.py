from __future__ import annotations

from pathlib import Path

# interview_scheduling/core/paths.py -> repo root
REPO_ROOT = Path(__file__).resolve().parents[2]


def resolve_repo_path(path_value: str | Path) -> Path:
    """Resolve env files and key files given as absolute, CWD-relative or repo-relative paths.

    The first candidate that exists wins; otherwise the CWD-relative path is returned
    so callers can report it.
    """
    path = Path(path_value).expanduser()
    if path.is_absolute():
        return path
    for candidate in (Path.cwd() / path, REPO_ROOT / path):
        if candidate.exists():
            return candidate.resolve()
    return (Path.cwd() / path).resolve()
