"""
Configuration management for mbz_import.

Uses pydantic-settings for environment variable loading and validation.
A JSON manifest can be layered on top of the environment.
"""

import json
from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Order of import for entity types. Each type only references types before it.
IMPORT_ORDER: tuple[str, ...] = (
    "schema",
    "enums",
    "super-enums",
    "artists",
    "areleases",
    "areleases-artists",
    "labels",
    "releases",
    "releases-artists",
    "media",
)

# Manifest keys -> settings fields
_MANIFEST_KEYS = {
    "db-name": "db_name",
    "basedir": "basedir",
    "concurrency": "concurrency",
    "batch-size": "batch_size",
    "import-order": "import_order",
    "store": "store",
}
_CLIENT_CFG_KEYS = {
    "server": "db_server",
    "driver": "db_driver",
    "trusted-connection": "db_trusted_connection",
    "username": "db_username",
    "password": "db_password",
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="MBZ_",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # Store selection and SQL Server connection
    store: Literal["memory", "sqlserver"] = Field(default="sqlserver", description="Store backend")
    db_server: str = Field(default="localhost", description="SQL Server hostname")
    db_name: str = Field(default="mbrainz", description="Database name")
    db_driver: str = Field(
        default="ODBC Driver 18 for SQL Server",
        description="ODBC driver name",
    )
    db_trusted_connection: bool = Field(
        default=True,
        description="Use Windows authentication",
    )
    db_username: str | None = Field(default=None, description="SQL username (if not trusted)")
    db_password: str | None = Field(default=None, description="SQL password (if not trusted)")

    # Data directory with entities/ and batches/
    basedir: Path = Field(default=Path("subsets"), description="Directory with entity and batch data")

    # Batching and loading
    batch_size: int = Field(default=100, ge=1, description="Entities per batch; never change between runs")
    concurrency: int = Field(default=3, ge=1, description="Batches in flight at a time")
    commit_timeout: float = Field(default=30.0, gt=0, description="Seconds per batch commit")
    extract_queue_size: int = Field(default=1000, ge=1)
    load_queue_size: int = Field(default=100, ge=1)
    import_order: list[str] = Field(default_factory=lambda: list(IMPORT_ORDER))

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    @field_validator("import_order")
    @classmethod
    def _known_types(cls, value: list[str]) -> list[str]:
        unknown = [t for t in value if t not in IMPORT_ORDER]
        if unknown:
            raise ValueError(f"Unknown entity types in import_order: {unknown}")
        return value

    @property
    def entities_dir(self) -> Path:
        """Directory for source entity files."""
        return self.basedir / "entities"

    @property
    def batches_dir(self) -> Path:
        """Directory for batch files."""
        return self.basedir / "batches"

    def connection_string(self, database: str | None = None) -> str:
        """Build connection string for mssql-python.

        Format: SERVER=host;DATABASE=db;UID=user;PWD=pass;...
        """
        parts = [
            f"SERVER={self.db_server}",
            f"DATABASE={database or self.db_name}",
        ]
        if self.db_trusted_connection:
            parts.append("Trusted_Connection=yes")
        else:
            if self.db_username:
                parts.append(f"UID={self.db_username}")
            if self.db_password:
                parts.append(f"PWD={self.db_password}")
        parts.append("TrustServerCertificate=yes")
        parts.append("Encrypt=yes")
        return ";".join(parts)

    @classmethod
    def from_manifest(cls, path: Path, **overrides: Any) -> "Settings":
        """
        Load settings from a JSON manifest on top of the environment.

        Manifest keys: client-cfg, db-name, basedir, concurrency,
        batch-size (optional), import-order (optional), store (optional).
        """
        with open(path, encoding="utf-8") as f:
            manifest = json.load(f)
        values: dict[str, Any] = {}
        for key, field_name in _MANIFEST_KEYS.items():
            if key in manifest:
                values[field_name] = manifest[key]
        for key, field_name in _CLIENT_CFG_KEYS.items():
            if key in manifest.get("client-cfg", {}):
                values[field_name] = manifest["client-cfg"][key]
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


# Global settings instance
settings = Settings()
