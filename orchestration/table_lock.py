"""Table-level application lock for rotations (sp_getapplock).

Prevents two rotations of the same table from interleaving their
create/copy/rename steps. The lock is Transaction-owned: it is taken as the
first statement of the rotation transaction and released by SQL Server at
COMMIT or ROLLBACK, so there is no explicit release call and no window
between release and commit.

Usage (inside a transaction on a session opened with autocommit=False):
    acquire_table_lock(session, "dbo", "Orders")
    ...  # rotation steps
    session.commit()  # releases the lock
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import config
from errors import TableLocked

if TYPE_CHECKING:
    from connections import SqlSession

logger = logging.getLogger(__name__)

# Lock resource name pattern (sp_getapplock resources are limited to 255 chars)
_LOCK_RESOURCE = "TableAdmin_Rotate_{database}_{schema}_{table}"


def lock_resource(database: str, schema: str, table: str) -> str:
    return _LOCK_RESOURCE.format(database=database, schema=schema, table=table)[:255]


def acquire_table_lock(
    session: SqlSession,
    schema: str,
    table: str,
    timeout_ms: int | None = None,
) -> str:
    """Acquire an exclusive Transaction-owned application lock for a table.

    Args:
        session: Session with an open (implicit) transaction.
        schema: Table schema.
        table: Table name.
        timeout_ms: Lock wait timeout. Defaults to config.ROTATION_LOCK_TIMEOUT_MS.

    Returns:
        The lock resource name.

    Raises:
        TableLocked: Another session holds the lock (or the request failed).
    """
    if timeout_ms is None:
        timeout_ms = config.ROTATION_LOCK_TIMEOUT_MS
    resource = lock_resource(session.database, schema, table)

    result = session.execute(
        "SET NOCOUNT ON; "
        "DECLARE @result INT; "
        "EXEC @result = sp_getapplock "
        "  @Resource = ?, "
        "  @LockMode = 'Exclusive', "
        "  @LockOwner = 'Transaction', "
        "  @LockTimeout = ?; "
        "SELECT @result;",
        resource, timeout_ms,
    ).scalar()

    # sp_getapplock return codes:
    #  0 = lock granted synchronously
    #  1 = lock granted after waiting
    # -1 = lock request timed out
    # -2 = lock request was cancelled
    # -3 = lock request was chosen as deadlock victim
    # -999 = parameter error
    status = int(result) if result is not None else -999
    if status < 0:
        logger.warning(
            "Could not acquire table lock: %s (result=%d) — another rotation "
            "is processing this table.",
            resource, status,
        )
        raise TableLocked(resource, status)

    logger.info("Acquired table lock: %s (result=%d)", resource, status)
    return resource
