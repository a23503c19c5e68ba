"""initial

Revision ID: 0001_initial
Revises: 
Create Date: 2026-10-18 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

transport_type = sa.Enum("mqtt", "ble", name="transporttype")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("username", sa.String(length=64), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("role", sa.Enum("admin", "operator", name="userrole"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index(op.f("ix_users_username"), "users", ["username"], unique=True)

    op.create_table(
        "firmware",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("version", sa.String(length=32), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("release_notes", sa.Text(), nullable=True),
        sa.Column("original_filename", sa.String(length=255), nullable=True),
        sa.Column("uploader_id", sa.Uuid(), nullable=False),
        sa.Column("target_device_group", sa.String(length=128), nullable=False),
        sa.Column("transport_type", transport_type, nullable=False),
        sa.Column("storage_path", sa.String(length=500), nullable=False),
        sa.Column("file_size", sa.Integer(), nullable=False),
        sa.Column("sha256", sa.String(length=64), nullable=False),
        sa.Column("hmac", sa.String(length=64), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["uploader_id"], ["users.id"], name="fk_firmware_uploader_id_users"),
    )
    op.create_index(op.f("ix_firmware_target_device_group"), "firmware", ["target_device_group"], unique=False)

    op.create_table(
        "devices",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("device_identifier", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("device_group", sa.String(length=128), nullable=False),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_firmware_id", sa.Uuid(), nullable=True),
        sa.Column("meta", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(
            ["current_firmware_id"], ["firmware.id"], name="fk_devices_current_firmware_id_firmware"
        ),
    )
    op.create_index(op.f("ix_devices_device_identifier"), "devices", ["device_identifier"], unique=True)
    op.create_index(op.f("ix_devices_device_group"), "devices", ["device_group"], unique=False)

    op.create_table(
        "update_jobs",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("firmware_id", sa.Uuid(), nullable=False),
        sa.Column("initiated_by", sa.Uuid(), nullable=False),
        sa.Column("transport_type", transport_type, nullable=False),
        sa.Column(
            "strategy",
            sa.Enum("sequential", "parallel", "rolling", name="rolloutstrategy"),
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.Enum("pending", "in_progress", "completed", "failed", "cancelled", name="jobstatus"),
            nullable=False,
        ),
        sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_devices", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed_devices", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed_devices", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["firmware_id"], ["firmware.id"], name="fk_update_jobs_firmware_id_firmware"),
        sa.ForeignKeyConstraint(["initiated_by"], ["users.id"], name="fk_update_jobs_initiated_by_users"),
    )
    op.create_index(op.f("ix_update_jobs_firmware_id"), "update_jobs", ["firmware_id"], unique=False)
    op.create_index(op.f("ix_update_jobs_status"), "update_jobs", ["status"], unique=False)

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("target_type", sa.String(length=64), nullable=False),
        sa.Column("target_id", sa.String(length=64), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_audit_logs_user_id_users"),
    )
    op.create_index(op.f("ix_audit_logs_user_id"), "audit_logs", ["user_id"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_audit_logs_user_id"), table_name="audit_logs")
    op.drop_table("audit_logs")

    op.drop_index(op.f("ix_update_jobs_status"), table_name="update_jobs")
    op.drop_index(op.f("ix_update_jobs_firmware_id"), table_name="update_jobs")
    op.drop_table("update_jobs")

    op.drop_index(op.f("ix_devices_device_group"), table_name="devices")
    op.drop_index(op.f("ix_devices_device_identifier"), table_name="devices")
    op.drop_table("devices")

    op.drop_index(op.f("ix_firmware_target_device_group"), table_name="firmware")
    op.drop_table("firmware")

    op.drop_index(op.f("ix_users_username"), table_name="users")
    op.drop_table("users")

    op.execute("DROP TYPE IF EXISTS jobstatus")
    op.execute("DROP TYPE IF EXISTS rolloutstrategy")
    op.execute("DROP TYPE IF EXISTS transporttype")
    op.execute("DROP TYPE IF EXISTS userrole")
