"""Database operations for the animal tree."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Generator, Optional

import psycopg2
from psycopg2 import errors
from psycopg2.extras import RealDictCursor

import config

logger = logging.getLogger(__name__)

# Key for pg_advisory_xact_lock; serializes reparents and bootstrap.
TREE_LOCK_KEY = 0x616E696D


def get_connection_string() -> str:
    """Get database connection string from config/environment."""
    return config.get_database_url()


@contextmanager
def get_db() -> Generator[psycopg2.extensions.connection, None, None]:
    """Get a database connection. Uncommitted work is rolled back on close."""
    conn = psycopg2.connect(get_connection_string())
    try:
        yield conn
    finally:
        conn.close()


# =============================================================================
# Errors
# =============================================================================

class TreeError(Exception):
    """A tree mutation was rejected. ``message`` is safe to show to clients."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ParentNotFound(TreeError):
    def __init__(self, parent_id: int):
        super().__init__(f"Parent {parent_id} does not exist.")
        self.parent_id = parent_id


class AnimalNotFound(TreeError):
    def __init__(self, animal_id: int):
        super().__init__(f"Animal {animal_id} does not exist.")
        self.animal_id = animal_id


class AnimalIsParent(TreeError):
    def __init__(self, animal_id: int):
        super().__init__(f"Animal {animal_id} is a parent.")
        self.animal_id = animal_id


class CannotDeleteRoot(TreeError):
    def __init__(self):
        super().__init__("Cannot delete root.")


class WouldCreateCycle(TreeError):
    def __init__(self, animal_id: int, new_parent_id: int):
        super().__init__(f"Animal {new_parent_id} is a descendant of {animal_id}.")
        self.animal_id = animal_id
        self.new_parent_id = new_parent_id


# =============================================================================
# Schema & bootstrap
# =============================================================================

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS animals (
    id        BIGSERIAL PRIMARY KEY,
    label     TEXT NOT NULL DEFAULT '',
    parent_id BIGINT REFERENCES animals (id) ON DELETE RESTRICT
);
CREATE INDEX IF NOT EXISTS animals_parent_id_idx ON animals (parent_id);
CREATE UNIQUE INDEX IF NOT EXISTS animals_single_root_idx
    ON animals ((parent_id IS NULL)) WHERE parent_id IS NULL;
"""


def ensure_schema() -> None:
    """Create the animals table and its indexes if they do not exist."""
    with get_db() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT pg_advisory_xact_lock(%s)", (TREE_LOCK_KEY,))
            cur.execute(SCHEMA_SQL)
            conn.commit()


def bootstrap_root(label: str = "root") -> int:
    """Insert the root animal if the table is empty and return the root id.

    Safe to call from several processes at once: the advisory lock makes the
    emptiness check and the insert atomic with respect to other bootstraps.
    """
    with get_db() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT pg_advisory_xact_lock(%s)", (TREE_LOCK_KEY,))
            cur.execute("SELECT id FROM animals WHERE parent_id IS NULL")
            row = cur.fetchone()
            if row:
                conn.commit()
                return row[0]

            cur.execute("SELECT EXISTS (SELECT 1 FROM animals)")
            if cur.fetchone()[0]:
                conn.rollback()
                raise RuntimeError("animals table has rows but no root; refusing to bootstrap")

            cur.execute(
                "INSERT INTO animals (label, parent_id) VALUES (%s, NULL) RETURNING id",
                (label,),
            )
            root_id = cur.fetchone()[0]
            conn.commit()
    logger.info(f"Bootstrapped empty tree with root {root_id} ({label!r})")
    return root_id


def get_root_id() -> Optional[int]:
    """Get the id of the parentless animal, or None if the tree is empty."""
    with get_db() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT id FROM animals WHERE parent_id IS NULL")
            row = cur.fetchone()
            return row[0] if row else None


# =============================================================================
# Reads
# =============================================================================

CLOSURE_SQL = """
WITH RECURSIVE closure (id, parent_id, label) AS (
    SELECT id, parent_id, label
    FROM animals
    WHERE parent_id IS NULL
    UNION ALL
    SELECT a.id, a.parent_id, a.label
    FROM animals a
    INNER JOIN closure c ON a.parent_id = c.id
)
SELECT id, parent_id, label FROM closure ORDER BY id
"""


def fetch_closure() -> list[dict[str, Any]]:
    """Fetch every animal reachable from the root in one round trip.

    Rows are ordered by id and fully fetched before returning.
    """
    with get_db() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(CLOSURE_SQL)
            return [dict(row) for row in cur.fetchall()]


def fetch_all_rows() -> list[dict[str, Any]]:
    """Get every stored animal, reachable from the root or not."""
    with get_db() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute("SELECT id, parent_id, label FROM animals ORDER BY id")
            return [dict(row) for row in cur.fetchall()]


def get_animal(animal_id: int) -> Optional[dict[str, Any]]:
    """Get animal by ID."""
    with get_db() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute("SELECT id, parent_id, label FROM animals WHERE id = %s", (animal_id,))
            row = cur.fetchone()
            return dict(row) if row else None


def count_animals() -> int:
    with get_db() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT COUNT(*) FROM animals")
            return cur.fetchone()[0]


# =============================================================================
# Mutations
# =============================================================================

def insert_animal(parent_id: int, label: str) -> int:
    """Create a child of ``parent_id`` and return its id.

    The parent row is held with FOR KEY SHARE until commit so a concurrent
    delete of the parent waits for this insert.

    Raises:
        ParentNotFound: If ``parent_id`` does not exist.
    """
    with get_db() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT id FROM animals WHERE id = %s FOR KEY SHARE", (parent_id,))
            if cur.fetchone() is None:
                conn.rollback()
                raise ParentNotFound(parent_id)

            try:
                cur.execute(
                    "INSERT INTO animals (label, parent_id) VALUES (%s, %s) RETURNING id",
                    (label, parent_id),
                )
            except errors.ForeignKeyViolation:
                conn.rollback()
                raise ParentNotFound(parent_id)
            animal_id = cur.fetchone()[0]
            conn.commit()
    logger.info(f"Inserted animal {animal_id} under {parent_id}")
    return animal_id


def delete_animal(animal_id: int, root_id: int) -> None:
    """Delete a leaf animal.

    The target row is locked FOR UPDATE before the children check. An insert
    under this animal needs a FOR KEY SHARE lock on it, so no child can appear
    between the check and the delete.

    Raises:
        CannotDeleteRoot: If ``animal_id`` is the root (checked before any query).
        AnimalIsParent: If any animal has ``animal_id`` as its parent.
        AnimalNotFound: If no row was deleted.
    """
    if animal_id == root_id:
        raise CannotDeleteRoot()

    with get_db() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT id FROM animals WHERE id = %s FOR UPDATE", (animal_id,))
            cur.execute("SELECT EXISTS (SELECT 1 FROM animals WHERE parent_id = %s)", (animal_id,))
            if cur.fetchone()[0]:
                conn.rollback()
                raise AnimalIsParent(animal_id)

            try:
                cur.execute("DELETE FROM animals WHERE id = %s", (animal_id,))
            except errors.ForeignKeyViolation:
                conn.rollback()
                raise AnimalIsParent(animal_id)
            if cur.rowcount != 1:
                conn.rollback()
                raise AnimalNotFound(animal_id)
            conn.commit()
    logger.info(f"Deleted animal {animal_id}")


ANCESTOR_SQL = """
WITH RECURSIVE ancestors (id, parent_id) AS (
    SELECT id, parent_id FROM animals WHERE id = %s
    UNION
    SELECT a.id, a.parent_id
    FROM animals a
    INNER JOIN ancestors an ON a.id = an.parent_id
)
SELECT EXISTS (SELECT 1 FROM ancestors WHERE id = %s)
"""


def reparent_animal(animal_id: int, new_parent_id: int, check_cycles: bool = True) -> None:
    """Move ``animal_id`` under ``new_parent_id`` with a single UPDATE.

    A missing new parent is detected by the foreign key, not a prior lookup.
    With ``check_cycles`` the ancestors of the new parent are walked first and
    the move is rejected if ``animal_id`` is one of them; reparents hold a
    transaction-scoped advisory lock so two moves cannot form a cycle together.

    Raises:
        WouldCreateCycle: If the new parent is the animal or one of its descendants.
        AnimalNotFound: If ``animal_id`` does not exist.
        ParentNotFound: If ``new_parent_id`` does not exist.
    """
    with get_db() as conn:
        with conn.cursor() as cur:
            if check_cycles:
                cur.execute("SELECT pg_advisory_xact_lock(%s)", (TREE_LOCK_KEY,))
                cur.execute(ANCESTOR_SQL, (new_parent_id, animal_id))
                if cur.fetchone()[0]:
                    conn.rollback()
                    raise WouldCreateCycle(animal_id, new_parent_id)

            try:
                cur.execute(
                    "UPDATE animals SET parent_id = %s WHERE id = %s",
                    (new_parent_id, animal_id),
                )
            except (errors.ForeignKeyViolation, errors.NumericValueOutOfRange):
                conn.rollback()
                raise ParentNotFound(new_parent_id)
            if cur.rowcount == 0:
                conn.rollback()
                raise AnimalNotFound(animal_id)
            conn.commit()
    logger.info(f"Moved animal {animal_id} under {new_parent_id}")
