#!/usr/bin/env python3
"""
Create the visitor table and ID sequence in Snowflake.

Idempotent: uses CREATE ... IF NOT EXISTS, so it is safe to run on
every deploy.

Usage:
    python scripts/create_schema.py

Requires:
    - .env file with Snowflake credentials
"""

import sys
from pathlib import Path

# Make the hvms package importable when run from a checkout
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from hvms.api.dependencies import build_snowflake_config  # noqa: E402
from hvms.config.settings import get_settings  # noqa: E402
from hvms.infrastructure.snowflake.client import create_snowflake_connection  # noqa: E402

STATEMENTS = [
    "CREATE SEQUENCE IF NOT EXISTS visitor_id_seq START = 1 INCREMENT = 1",
    """
    CREATE TABLE IF NOT EXISTS visitors (
        visitor_id NUMBER(38, 0) NOT NULL PRIMARY KEY,
        name VARCHAR(100) NOT NULL,
        contact_number VARCHAR(50) NOT NULL,
        address VARCHAR(255),
        purpose VARCHAR(200),
        patient_id NUMBER(38, 0),
        check_in_time TIMESTAMP_TZ NOT NULL,
        check_out_time TIMESTAMP_TZ,
        id_proof VARCHAR(512),
        id_proof_content_type VARCHAR(100),
        qr_payload VARCHAR(100),
        qr_code VARCHAR,
        qr_issued_at TIMESTAMP_TZ
    )
    """,
]


def main() -> int:
    settings = get_settings()

    if settings.snowflake_mock_mode:
        print("SNOWFLAKE_MOCK_MODE is set; nothing to create.")
        return 0

    config = build_snowflake_config(settings)

    with create_snowflake_connection(config=config) as conn:
        cursor = conn.cursor()
        try:
            for statement in STATEMENTS:
                cursor.execute(statement)
            conn.commit()
        finally:
            cursor.close()

    print(f"Schema ready in {config.database}.{config.schema}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
