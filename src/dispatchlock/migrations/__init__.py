"""
SQL schema templates for the dispatchlock stores.

Tables:
    - booking_locks: Lock records, one per booking
    - bookings: Minimal booking table (booking_id, status, driver_id)

Supported backends:
    - postgresql (default)
    - sqlite

Table names are substituted from LockConfig so deployments can point
the lock at existing tables.

Usage:
    from dispatchlock.migrations import get_schema, get_statements

    locks_sql = get_schema("booking_locks")
    all_sql = get_schema("all", backend="sqlite")

    async with engine.begin() as conn:
        for statement in get_statements("all"):
            await conn.execute(text(statement))
"""

from pathlib import Path
from typing import Literal

from dispatchlock.config import LockConfig

SchemaName = Literal["booking_locks", "bookings", "all"]

BackendName = Literal["postgresql", "sqlite"]

_TEMPLATES_DIR = Path(__file__).parent / "templates"

# Rendering order for "all"
_SCHEMA_ORDER: tuple[str, ...] = ("bookings", "booking_locks")


def list_schemas(backend: BackendName = "postgresql") -> list[str]:
    """Return the schema names available for a backend."""
    backend_dir = _TEMPLATES_DIR / backend
    if not backend_dir.is_dir():
        return []
    return sorted(path.stem for path in backend_dir.glob("*.sql"))


def get_template_path(name: str, backend: BackendName = "postgresql") -> Path:
    """
    Get the path to a SQL template file.

    Raises:
        ValueError: If the schema is not available for the backend
    """
    path = _TEMPLATES_DIR / backend / f"{name}.sql"
    if not path.exists():
        raise ValueError(
            f"Schema '{name}' is not available for backend '{backend}'. "
            f"Available schemas: {list_schemas(backend)}"
        )
    return path


def get_schema(
    name: SchemaName,
    backend: BackendName = "postgresql",
    config: LockConfig | None = None,
) -> str:
    """
    Render a SQL schema by name and backend.

    Args:
        name: "booking_locks", "bookings", or "all"
        backend: "postgresql" (default) or "sqlite"
        config: Supplies table names (defaults to LockConfig())

    Returns:
        SQL text with table names substituted

    Raises:
        ValueError: If the schema is not available for the backend

    Example:
        >>> sql = get_schema("booking_locks", backend="sqlite")
        >>> "CREATE TABLE IF NOT EXISTS booking_locks" in sql
        True
    """
    config = config or LockConfig()
    names = _SCHEMA_ORDER if name == "all" else (name,)

    rendered = []
    for schema_name in names:
        template = get_template_path(schema_name, backend).read_text()
        rendered.append(
            template.format(
                lock_table=config.lock_table,
                booking_table=config.booking_table,
            )
        )
    return "\n".join(rendered)


def get_statements(
    name: SchemaName,
    backend: BackendName = "postgresql",
    config: LockConfig | None = None,
) -> list[str]:
    """
    Split a rendered schema into individual statements.

    Drivers such as asyncpg execute one statement per call.
    """
    statements = []
    for chunk in get_schema(name, backend, config).split(";"):
        lines = [line for line in chunk.splitlines() if not line.strip().startswith("--")]
        statement = "\n".join(lines).strip()
        if statement:
            statements.append(statement)
    return statements


__all__ = [
    "SchemaName",
    "BackendName",
    "list_schemas",
    "get_template_path",
    "get_schema",
    "get_statements",
]
