"""
Configuration module for the operator.

Loads configuration from environment variables.
"""

import os
from dataclasses import dataclass, field


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass
class ServerConfig:
    """SQL Server connection configuration."""

    host: str = "localhost"
    port: int = 1433
    user: str = "sa"
    password: str = field(default="", repr=False)  # Never log password
    default_database: str = "master"
    driver: str = "ODBC Driver 18 for SQL Server"
    encrypt: bool = True
    trust_server_certificate: bool = False
    timeout: int = 30

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        host = os.getenv("MSSQL_HOST", "")
        user = os.getenv("MSSQL_USER", "")
        password = os.getenv("MSSQL_PASSWORD", "")
        missing = [
            name
            for name, value in (
                ("MSSQL_HOST", host),
                ("MSSQL_USER", user),
                ("MSSQL_PASSWORD", password),
            )
            if not value
        ]
        if missing:
            raise ValueError(
                f"{', '.join(missing)} environment variable(s) must be set "
                "to connect to SQL Server."
            )

        port_str = os.getenv("MSSQL_PORT", "1433")
        try:
            port = int(port_str)
        except ValueError:
            raise ValueError(
                f"Expected MSSQL_PORT to be an integer, but got: {port_str!r}"
            ) from None

        return cls(
            host=host,
            port=port,
            user=user,
            password=password,
            default_database=os.getenv("MSSQL_DEFAULT_DB") or "master",
            driver=os.getenv("MSSQL_DRIVER", "ODBC Driver 18 for SQL Server"),
            encrypt=_env_flag("MSSQL_ENCRYPT", "true"),
            trust_server_certificate=_env_flag(
                "MSSQL_TRUST_SERVER_CERTIFICATE", "false"
            ),
            timeout=int(os.getenv("MSSQL_TIMEOUT", "30")),
        )

    def odbc_dsn(self) -> str:
        """Build the ODBC connection string."""
        return (
            f"Driver={{{self.driver}}};"
            f"Server=tcp:{self.host},{self.port};"
            f"Database={self.default_database};"
            f"UID={self.user};"
            f"PWD={{{self.password.replace('}', '}}')}}};"
            f"Encrypt={'yes' if self.encrypt else 'no'};"
            f"TrustServerCertificate={'yes' if self.trust_server_certificate else 'no'};"
            f"Connection Timeout={self.timeout};"
        )


@dataclass
class ControllerConfig:
    """Manifest convergence configuration."""

    state_file: str = "mssql-operator.state.json"
    refresh_before_plan: bool = True

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            state_file=os.getenv("STATE_FILE", "mssql-operator.state.json"),
            refresh_before_plan=_env_flag("REFRESH_BEFORE_PLAN", "true"),
        )


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "INFO"

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(level=os.getenv("LOG_LEVEL", "INFO").upper())
