"""
Environment configuration for lmdb-docstore.

Provides configuration management using Pydantic settings with support for:
- Environment variables with LMDB_DOCSTORE_ prefix
- Runtime settings override
- Type validation and defaults

The defaults favour large sparse maps: LMDB only reserves address space for
``map_size``, disk usage grows with the data actually written.
"""

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

import lmdb_docstore


__all__ = [
    "LmdbConfig",
    "default_database_path",
]


def default_database_path(database_name="default"):
    # type: (str) -> Path
    """
    Location of a named database inside the user data directory.

    :param database_name: Name of the database directory
    :return: Path to the database directory (not created)
    """
    return Path(lmdb_docstore.dirs.user_data_dir) / database_name


class LmdbConfig(BaseSettings):
    """
    Settings for opening an LMDB environment.

    Settings can be configured via:
    - Environment variables (prefixed with LMDB_DOCSTORE_)
    - Direct instantiation with parameters
    - Runtime override using the override() method

    Attributes:
        database_path: Directory holding the LMDB data and lock files
        map_size: Maximum size of the memory map in bytes
        max_collections: Maximum number of named collections
        max_readers: Maximum number of concurrent read transactions
        file_system_synchronized: Flush to disk on every commit (sync + metasync)
    """

    database_path: Path = Field(
        default_factory=default_database_path,
        description="Directory holding the LMDB environment",
    )

    map_size: int = Field(
        100_000_000_000,
        description="Maximum size of the memory map in bytes",
        gt=0,
    )

    max_collections: int = Field(
        10_000,
        description="Maximum number of named collections",
        ge=1,
    )

    max_readers: int = Field(
        100,
        description="Maximum number of concurrent read transactions",
        ge=1,
    )

    file_system_synchronized: bool = Field(
        True,
        description="Flush data and metadata to disk on every commit",
    )

    @field_validator("database_path", mode="before")
    @classmethod
    def expand_database_path(cls, v):
        # type: (str|Path) -> Path
        """
        Expand ``~`` in database paths given as strings or paths.

        :param v: Database path from environment or constructor
        :return: Expanded path
        """
        return Path(v).expanduser()

    model_config = SettingsConfigDict(
        env_prefix="LMDB_DOCSTORE_",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        validate_assignment=True,
    )

    @classmethod
    def build(cls, database_name="default", file_system_synchronized=True):
        # type: (str, bool) -> LmdbConfig
        """
        Create a config for a named database in the user data directory.

        The database directory is created if missing.

        :param database_name: Name of the database directory
        :param file_system_synchronized: Flush to disk on every commit
        :return: LmdbConfig pointing at the created directory
        """
        database_path = default_database_path(database_name)
        database_path.mkdir(parents=True, exist_ok=True)
        return cls(database_path=database_path, file_system_synchronized=file_system_synchronized)

    def override(self, update=None):
        # type: (dict|None) -> LmdbConfig
        """
        Returns an updated and validated deep copy of the current settings instance.

        :param update: Dictionary of field names and values to override.
        :return: New LmdbConfig instance with updated and validated fields.
        """

        update = update or {}  # sets {} if update is None

        settings = self.model_copy(deep=True)
        # We need update fields individually so validation gets triggered
        for field, value in update.items():
            setattr(settings, field, value)
        return settings
