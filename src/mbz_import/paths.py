"""
File locations for source records and batch files.

Layout under the base directory:
- entities/: source records (<type>.parquet or <type>.jsonl) and catalog tables
- batches/: one <type>.jsonl batch file per entity type
"""

from dataclasses import dataclass
from pathlib import Path

SOURCE_SUFFIXES = (".parquet", ".jsonl")


@dataclass(frozen=True)
class StoragePaths:
    """Resolves entity and batch files for a base directory."""

    basedir: Path

    @property
    def entities_dir(self) -> Path:
        return self.basedir / "entities"

    @property
    def batches_dir(self) -> Path:
        return self.basedir / "batches"

    def ensure_dirs(self) -> None:
        """Create the batches directory if missing."""
        self.batches_dir.mkdir(parents=True, exist_ok=True)

    def entities_file(self, entity_type: str) -> Path:
        """
        Source file for an entity type.

        Parquet is preferred when both formats exist. If neither exists the
        Parquet path is returned so the caller's error names it.
        """
        for suffix in SOURCE_SUFFIXES:
            path = self.entities_dir / f"{entity_type}{suffix}"
            if path.exists():
                return path
        return self.entities_dir / f"{entity_type}{SOURCE_SUFFIXES[0]}"

    def batch_file(self, entity_type: str) -> Path:
        """Batch file for an entity type."""
        return self.batches_dir / f"{entity_type}.jsonl"

    def table_file(self, name: str) -> Path:
        """Catalog table file (enums.json, countries.json, ...)."""
        return self.entities_dir / f"{name}.json"
