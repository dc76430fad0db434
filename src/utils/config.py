"""
Where the ledger database lives.

Production installs keep the SQLite file under the user's home directory,
development checkouts under ./data. CENTRAL_KITCHEN_DATABASE_URL replaces
both with any SQLAlchemy URL, e.g. a shared PostgreSQL server for the
kitchen and store terminals.
"""

import logging
import os
from pathlib import Path
from typing import Optional

from .constants import DATABASE_FILENAME

ENV_VAR_ENVIRONMENT = "CENTRAL_KITCHEN_ENV"
ENV_VAR_DATABASE_URL = "CENTRAL_KITCHEN_DATABASE_URL"


class Config:
    """Resolved database location for one environment."""

    def __init__(self, environment: str = "production", database_url: Optional[str] = None):
        """
        Args:
            environment: 'production' or 'development'
            database_url: Explicit SQLAlchemy URL; wins over the file location
        """
        self.environment = environment
        self._database_url_override = database_url

        if environment == "development":
            self._database_dir = Path(__file__).parent.parent.parent / "data"
        else:
            self._database_dir = Path.home() / ".central_kitchen"
        self._database_path = self._database_dir / DATABASE_FILENAME

    @property
    def database_path(self) -> Path:
        return self._database_path

    @property
    def database_url(self) -> str:
        if self._database_url_override:
            return self._database_url_override
        return f"sqlite:///{self._database_path.as_posix()}"

    def database_exists(self) -> bool:
        """Whether the SQLite file is present. Server URLs always count as present."""
        override = self._database_url_override
        if override and not override.startswith("sqlite"):
            return True
        return self._database_path.exists()

    def __repr__(self) -> str:
        return f"Config(environment='{self.environment}', database_url='{self.database_url}')"


_config_instance: Optional[Config] = None


def get_config(environment: Optional[str] = None) -> Config:
    """
    Return the process-wide Config, creating it from the environment on first call.

    A later call naming a different environment gets the existing instance
    and a warning; the database is fixed for the life of the process.
    """
    global _config_instance

    if _config_instance is None:
        if environment is None:
            environment = os.environ.get(ENV_VAR_ENVIRONMENT, "production")
        _config_instance = Config(environment, database_url=os.environ.get(ENV_VAR_DATABASE_URL))
    elif environment is not None and environment != _config_instance.environment:
        logging.getLogger(__name__).warning(
            f"Ignoring environment='{environment}'; ledger already configured "
            f"for '{_config_instance.environment}'"
        )

    return _config_instance


def reset_config():
    """Forget the cached Config so the next get_config() rereads the environment."""
    global _config_instance
    _config_instance = None
