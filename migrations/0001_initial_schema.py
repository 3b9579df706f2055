"""
Initial database schema for access-core
"""

from yoyo import step

__depends__ = {}

steps = [
    step(
        """
        CREATE TABLE early_access_tokens (
            id VARCHAR(64) PRIMARY KEY,
            code VARCHAR(64) NOT NULL UNIQUE,
            created_by VARCHAR(255),
            created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
            max_redemptions INTEGER NOT NULL DEFAULT 1 CHECK (max_redemptions >= 1),
            current_redemptions INTEGER NOT NULL DEFAULT 0
                CHECK (current_redemptions >= 0 AND current_redemptions <= max_redemptions),
            redeemed_users TEXT[] NOT NULL DEFAULT '{}'
                CHECK (cardinality(redeemed_users) = current_redemptions),
            redeemed_by VARCHAR(255),
            redeemed_at TIMESTAMPTZ,
            expires_at TIMESTAMPTZ,
            is_active BOOLEAN NOT NULL DEFAULT TRUE,
            metadata JSONB NOT NULL DEFAULT '{}'
        )
        """,
        """
        DROP TABLE early_access_tokens
        """,
    ),
    step(
        """
        CREATE INDEX idx_early_access_tokens_created_by ON early_access_tokens (created_by)
        """,
        """
        DROP INDEX idx_early_access_tokens_created_by
        """,
    ),
    step(
        """
        CREATE INDEX idx_early_access_tokens_created_at ON early_access_tokens (created_at DESC)
        """,
        """
        DROP INDEX idx_early_access_tokens_created_at
        """,
    ),
    step(
        """
        CREATE INDEX idx_early_access_tokens_active ON early_access_tokens (is_active) WHERE is_active
        """,
        """
        DROP INDEX idx_early_access_tokens_active
        """,
    ),
]
