"""001 – Guide application review: admins, applications with review leases, decision log, error logs.

Creates: admin_users, guide_applications, guide_application_approvals, error_logs
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


admin_role = postgresql.ENUM(
    "super_admin", "admin_finance", "admin_verifier", "admin_support",
    name="admin_role", create_type=False,
)
admin_status = postgresql.ENUM(
    "pending", "active", "inactive", "rejected",
    name="admin_status", create_type=False,
)
application_status = postgresql.ENUM(
    "drafted", "pending", "needs_more_info", "approved", "rejected",
    name="application_status_type", create_type=False,
)
admin_action = postgresql.ENUM(
    "review", "approve", "reject", "require_more_info",
    name="admin_action_type", create_type=False,
)
error_severity = postgresql.ENUM(
    "info", "warning", "error", "critical",
    name="error_severity", create_type=False,
)


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in (admin_role, admin_status, application_status, admin_action, error_severity):
        enum_type.create(bind, checkfirst=True)

    # ── admin_users ──────────────────────────────────────────
    op.create_table(
        "admin_users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("password_hash", sa.Text, nullable=False),
        sa.Column("role", admin_role, nullable=False),
        sa.Column("status", admin_status, nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_admin_users_email", "admin_users", ["email"])

    # ── guide_applications (lease columns live on the row) ───
    op.create_table(
        "guide_applications",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.Integer, nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("application_status", application_status, nullable=False, server_default="drafted"),
        sa.Column("internal_tags", sa.JSON, nullable=True),
        sa.Column("flagged_for_review", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("locked_by", sa.Integer, nullable=True),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("lock_expiry", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_guide_applications_user_id", "guide_applications", ["user_id"])
    op.create_index("ix_guide_applications_application_status", "guide_applications", ["application_status"])
    op.create_index("ix_guide_applications_locked_by", "guide_applications", ["locked_by"])
    op.create_index("ix_guide_applications_lock_expiry", "guide_applications", ["lock_expiry"])

    # ── guide_application_approvals ──────────────────────────
    op.create_table(
        "guide_application_approvals",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "application_id", sa.String(36),
            sa.ForeignKey("guide_applications.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("user_id", sa.Integer, nullable=False),
        sa.Column("admin_id", sa.Integer, sa.ForeignKey("admin_users.id"), nullable=True),
        sa.Column("admin_action", admin_action, nullable=True),
        sa.Column("note", sa.Text, nullable=True),
        sa.Column("user_response", sa.JSON, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index(
        "ix_guide_application_approvals_application_id",
        "guide_application_approvals", ["application_id"],
    )
    op.create_index(
        "ix_guide_application_approvals_admin_id",
        "guide_application_approvals", ["admin_id"],
    )

    # ── error_logs ───────────────────────────────────────────
    op.create_table(
        "error_logs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("severity", error_severity, nullable=False, server_default="error"),
        sa.Column("error_type", sa.String(200), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("traceback", sa.Text, nullable=True),
        sa.Column("module", sa.String(300), nullable=True),
        sa.Column("function_name", sa.String(200), nullable=True),
        sa.Column("request_method", sa.String(10), nullable=True),
        sa.Column("request_path", sa.String(500), nullable=True),
        sa.Column("status_code", sa.Integer, nullable=True),
        sa.Column("response_time_ms", sa.Float, nullable=True),
        sa.Column("admin_id", sa.Integer, nullable=True),
        sa.Column("application_id", sa.String(36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_error_logs_application_id", "error_logs", ["application_id"])


def downgrade() -> None:
    op.drop_table("error_logs")
    op.drop_table("guide_application_approvals")
    op.drop_table("guide_applications")
    op.drop_table("admin_users")

    bind = op.get_bind()
    for enum_type in (error_severity, admin_action, application_status, admin_status, admin_role):
        enum_type.drop(bind, checkfirst=True)
