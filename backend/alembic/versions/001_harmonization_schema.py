"""Create control catalog, control mappings and implementation plan tables

Revision ID: 001_harmonization_schema
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

revision = "001_harmonization_schema"
down_revision = None
branch_labels = None
depends_on = None


def _table_exists(table: str) -> bool:
    return sa.inspect(op.get_bind()).has_table(table)


def upgrade() -> None:
    # ── 1. frameworks ──
    if not _table_exists("frameworks"):
        op.create_table(
            "frameworks",
            sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
            sa.Column("name", sa.String(255), nullable=False, unique=True),
            sa.Column("code", sa.String(100), nullable=True),
            sa.Column("version", sa.String(50), nullable=True),
            sa.Column("description", sa.Text, nullable=True),
            sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime, server_default=sa.func.now(), nullable=False),
            sa.Column("updated_at", sa.DateTime, server_default=sa.func.now(), nullable=False),
        )

    # ── 2. controls ──
    if not _table_exists("controls"):
        op.create_table(
            "controls",
            sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
            sa.Column("framework_id", sa.Integer,
                      sa.ForeignKey("frameworks.id", ondelete="CASCADE"), nullable=False),
            sa.Column("control_code", sa.String(100), nullable=False),
            sa.Column("title", sa.String(500), nullable=False),
            sa.Column("description", sa.Text, nullable=True),
            sa.Column("created_at", sa.DateTime, server_default=sa.func.now(), nullable=False),
            sa.Column("updated_at", sa.DateTime, server_default=sa.func.now(), nullable=False),
            sa.UniqueConstraint("framework_id", "control_code", name="uq_control_fw_code"),
        )
        op.create_index("ix_control_framework", "controls", ["framework_id"])

    # ── 3. control_mappings ──
    if not _table_exists("control_mappings"):
        op.create_table(
            "control_mappings",
            sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
            sa.Column("source_control_id", sa.Integer,
                      sa.ForeignKey("controls.id", ondelete="CASCADE"), nullable=False),
            sa.Column("target_control_id", sa.Integer,
                      sa.ForeignKey("controls.id", ondelete="CASCADE"), nullable=False),
            sa.Column("mapping_type", sa.String(50), nullable=False, server_default="equivalent"),
            sa.Column("confidence", sa.String(50), nullable=False, server_default="manual"),
            sa.Column("notes", sa.Text, nullable=True),
            sa.Column("created_by", sa.String(200), nullable=True),
            sa.Column("created_at", sa.DateTime, server_default=sa.func.now(), nullable=False),
            sa.Column("updated_at", sa.DateTime, server_default=sa.func.now(), nullable=False),
            sa.UniqueConstraint("source_control_id", "target_control_id", name="uq_cm_src_tgt"),
        )
        op.create_index("ix_cm_source", "control_mappings", ["source_control_id"])
        op.create_index("ix_cm_target", "control_mappings", ["target_control_id"])

    # ── 4. implementation_plans ──
    if not _table_exists("implementation_plans"):
        op.create_table(
            "implementation_plans",
            sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
            sa.Column("client_id", sa.Integer, nullable=False),
            sa.Column("framework_id", sa.Integer,
                      sa.ForeignKey("frameworks.id", ondelete="SET NULL"), nullable=True),
            sa.Column("title", sa.String(255), nullable=False),
            sa.Column("description", sa.Text, nullable=True),
            sa.Column("status", sa.String(30), nullable=False, server_default="not_started"),
            sa.Column("priority", sa.String(50), nullable=False, server_default="medium"),
            sa.Column("estimated_hours", sa.Integer, nullable=True),
            sa.Column("created_at", sa.DateTime, server_default=sa.func.now(), nullable=False),
            sa.Column("updated_at", sa.DateTime, server_default=sa.func.now(), nullable=False),
        )
        op.create_index("ix_plan_client", "implementation_plans", ["client_id"])

    # ── 5. implementation_tasks ──
    if not _table_exists("implementation_tasks"):
        op.create_table(
            "implementation_tasks",
            sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
            sa.Column("implementation_plan_id", sa.Integer,
                      sa.ForeignKey("implementation_plans.id", ondelete="CASCADE"), nullable=False),
            sa.Column("title", sa.String(500), nullable=False),
            sa.Column("description", sa.Text, nullable=True),
            sa.Column("status", sa.String(30), nullable=False, server_default="todo"),
            sa.Column("control_code", sa.String(100), nullable=True),
            sa.Column("tags", sa.JSON, nullable=True),
            sa.Column("estimated_hours", sa.Integer, nullable=True),
            sa.Column("actual_hours", sa.Integer, nullable=True),
            sa.Column("created_at", sa.DateTime, server_default=sa.func.now(), nullable=False),
            sa.Column("updated_at", sa.DateTime, server_default=sa.func.now(), nullable=False),
        )
        op.create_index(
            "ix_task_plan_status", "implementation_tasks", ["implementation_plan_id", "status"],
        )


def downgrade() -> None:
    for table in (
        "implementation_tasks",
        "implementation_plans",
        "control_mappings",
        "controls",
        "frameworks",
    ):
        if _table_exists(table):
            op.drop_table(table)
