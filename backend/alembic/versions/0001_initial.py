"""initial schema

Revision ID: 0001_initial
Revises: 
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "services",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("code", sa.String(length=20), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "appointments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("service_id", sa.Integer(), nullable=True),
        sa.Column("registration_number", sa.String(length=40), nullable=True),
        sa.Column("visit_number", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("appointment_reference_id", sa.Integer(), nullable=True),
        sa.Column("appointment_date_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "status",
            sa.Enum(
                "unscheduled",
                "pending_therapist_assignment",
                "pending_patient_approval",
                "pending_payment",
                "paid",
                "completed",
                "cancelled",
                name="appointment_status",
            ),
            nullable=False,
            server_default="pending_therapist_assignment",
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["service_id"], ["services.id"]),
        sa.ForeignKeyConstraint(["appointment_reference_id"], ["appointments.id"]),
        sa.UniqueConstraint(
            "registration_number",
            "visit_number",
            name="uq_appointments_registration_number_visit_number",
        ),
    )
    op.create_index(
        "ix_appointments_appointment_reference_id",
        "appointments",
        ["appointment_reference_id"],
    )
    op.create_index("ix_appointments_created_at_id", "appointments", ["created_at", "id"])


def downgrade() -> None:
    op.drop_index("ix_appointments_created_at_id", table_name="appointments")
    op.drop_index("ix_appointments_appointment_reference_id", table_name="appointments")
    op.drop_table("appointments")
    op.drop_table("services")
    sa.Enum(name="appointment_status").drop(op.get_bind(), checkfirst=True)
