"""
Snowflake repository for visitor records.

Only the columns identity-proof custody cares about are handled here:
creating the visitor row, recording the identity-proof object name and
the check-in token, and reading the object name back. Every query uses
%s parameters; nothing from a request is ever formatted into SQL.

Each method is its own transaction. The orchestrator sequences them and
owns the compensation when a later step fails.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from ....core.custody.errors import VisitorNotFoundError
from ....core.custody.models import CheckInToken, IdentityProofRef

logger = logging.getLogger(__name__)


class SnowflakeConnection(Protocol):
    """
    Protocol for Snowflake connections.

    Using a protocol means tests can provide a mock without
    importing the actual snowflake-connector-python.
    """

    def cursor(self): ...
    def commit(self) -> None: ...
    def rollback(self) -> None: ...


@dataclass
class SnowflakeConfig:
    """Configuration for Snowflake connection."""
    account: str
    user: str
    password: Optional[str] = None
    private_key_path: Optional[str] = None
    private_key_base64: Optional[str] = None
    database: str = "HVMS"
    schema: str = "VISITS"
    warehouse: str = "COMPUTE_WH"
    role: Optional[str] = None


# Columns written at creation, in insert order
VISITOR_INSERT_COLUMNS = (
    "visitor_id",
    "name",
    "contact_number",
    "address",
    "purpose",
    "patient_id",
    "check_in_time",
)


class VisitorRepository:
    """
    Repository for visitor persistence.

    Implements the VisitorStore protocol from core.custody.orchestrator.
    """

    def __init__(self, connection: SnowflakeConnection) -> None:
        self._conn = connection

    def create_visitor(self, fields: dict) -> int:
        """
        Insert a visitor row and return its new ID.

        The ID comes from a sequence first so we know it without relying
        on driver-specific "last insert id" behaviour.
        """
        cursor = self._conn.cursor()

        try:
            cursor.execute("SELECT visitor_id_seq.NEXTVAL")
            visitor_id = int(cursor.fetchone()[0])

            values = [visitor_id] + [fields.get(col) for col in VISITOR_INSERT_COLUMNS[1:]]
            placeholders = ", ".join(["%s"] * len(VISITOR_INSERT_COLUMNS))

            cursor.execute(f"""
                INSERT INTO visitors ({", ".join(VISITOR_INSERT_COLUMNS)})
                VALUES ({placeholders})
            """, tuple(values))

            self._conn.commit()

            logger.debug("Inserted visitor", extra={"visitor_id": visitor_id})

            return visitor_id

        except Exception as e:
            logger.error("Failed to create visitor", extra={"error": str(e)})
            self._conn.rollback()
            raise
        finally:
            cursor.close()

    def set_identity_proof_ref(
        self,
        visitor_id: int,
        object_name: str,
        content_type: str,
    ) -> None:
        """Record the object name, only after the upload succeeded."""
        self._update(
            visitor_id,
            """
                UPDATE visitors
                SET id_proof = %s,
                    id_proof_content_type = %s
                WHERE visitor_id = %s
            """,
            (object_name, content_type, visitor_id),
        )

    def set_check_in_token(self, visitor_id: int, token: CheckInToken) -> None:
        self._update(
            visitor_id,
            """
                UPDATE visitors
                SET qr_payload = %s,
                    qr_code = %s,
                    qr_issued_at = %s
                WHERE visitor_id = %s
            """,
            (token.payload, token.data_url, token.issued_at, visitor_id),
        )

    def get_identity_proof_ref(self, visitor_id: int) -> Optional[IdentityProofRef]:
        """
        Read the identity-proof reference for a visitor.

        Returns None when the visitor exists but never uploaded a proof.
        Raises VisitorNotFoundError when there is no such visitor.
        """
        cursor = self._conn.cursor()

        try:
            cursor.execute("""
                SELECT id_proof, id_proof_content_type
                FROM visitors
                WHERE visitor_id = %s
            """, (visitor_id,))

            row = cursor.fetchone()
            if not row:
                raise VisitorNotFoundError(visitor_id)

            object_name, content_type = row
            if not object_name:
                return None

            return IdentityProofRef(
                owner_id=visitor_id,
                object_name=object_name,
                content_type=content_type or "application/octet-stream",
            )

        finally:
            cursor.close()

    def ping(self) -> None:
        """Cheap round trip used by the readiness check."""
        cursor = self._conn.cursor()
        try:
            cursor.execute("SELECT 1")
        finally:
            cursor.close()

    def delete_visitor(self, visitor_id: int) -> None:
        """Remove a visitor row left behind by a failed registration."""
        cursor = self._conn.cursor()

        try:
            cursor.execute("""
                DELETE FROM visitors
                WHERE visitor_id = %s
            """, (visitor_id,))

            self._conn.commit()

        except Exception as e:
            logger.error(
                "Failed to delete visitor",
                extra={"visitor_id": visitor_id, "error": str(e)}
            )
            self._conn.rollback()
            raise
        finally:
            cursor.close()

    # -----------------------------------------------------------------------
    # Private Methods
    # -----------------------------------------------------------------------

    def _update(self, visitor_id: int, query: str, params: tuple) -> None:
        cursor = self._conn.cursor()

        try:
            cursor.execute(query, params)

            if cursor.rowcount == 0:
                raise VisitorNotFoundError(visitor_id)

            self._conn.commit()

        except Exception as e:
            logger.error(
                "Failed to update visitor",
                extra={"visitor_id": visitor_id, "error": str(e)}
            )
            self._conn.rollback()
            raise
        finally:
            cursor.close()
