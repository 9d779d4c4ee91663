"""Agent runtime config and telemetry tables

Revision ID: 001
Revises: 
Create Date: 2026-10-19

"""
from alembic import op

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Read and execute SQL file
    import os
    sql_file = os.path.join(
        os.path.dirname(os.path.dirname(os.path.dirname(__file__))),
        "migrations",
        "001_agent_telemetry.sql"
    )

    with open(sql_file, 'r') as f:
        op.execute(f.read())


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS recommendation_impressions CASCADE")
    op.execute("DROP TABLE IF EXISTS agent_events CASCADE")
    op.execute("DROP TABLE IF EXISTS agent_sessions CASCADE")
    op.execute("DROP TABLE IF EXISTS agent_runtime_configs CASCADE")
