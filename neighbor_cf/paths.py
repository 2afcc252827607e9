from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class ProjectPaths:
    data_dir: Path
    output_dir: Path

    @classmethod
    def from_repo_root(
        cls,
        repo_root: Path,
        *,
        data_dir: Path | str = "data",
        output_dir: Path | str = "output",
    ) -> "ProjectPaths":
        return cls(
            data_dir=resolve_path(repo_root, data_dir),
            output_dir=resolve_path(repo_root, output_dir),
        )

    def data_file(self, name: Path | str) -> Path:
        """Resolve a dataset file name relative to `data_dir` (absolute paths pass through)."""
        return resolve_path(self.data_dir, name)

    def output_file(self, name: Path | str) -> Path:
        return resolve_path(self.output_dir, name)


def resolve_path(base: Path, p: Path | str) -> Path:
    p_path = Path(p)
    if not p_path.is_absolute():
        p_path = base / p_path
    return p_path.resolve()


def get_repo_root() -> Path:
    """Return repo root by searching upwards for `config.yaml` or `.git`."""
    start = Path.cwd().resolve()
    if start.is_file():
        start = start.parent

    for candidate in (start, *start.parents):
        if (candidate / "config.yaml").is_file() or (candidate / ".git").exists():
            return candidate

    # Fallback: search upwards from this file (useful if called from elsewhere).
    start = Path(__file__).resolve().parent
    for candidate in (start, *start.parents):
        if (candidate / "config.yaml").is_file() or (candidate / ".git").exists():
            return candidate

    raise FileNotFoundError("Could not locate repo root (expected `config.yaml` or `.git`).")
