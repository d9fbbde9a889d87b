# backend/alembic/versions/001_autoscuola_schema.py
"""Initial schema - appointments, reposition queue and payment ledger

Revision ID: 001_autoscuola_schema
Revises:
Create Date: 2026-10-18 00:00:00.000000

Creates every autoscuola table in its final form. Status columns are
VARCHAR with CHECK constraints instead of native ENUMs, and cross-table
links are plain ids without foreign keys.
"""
from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_autoscuola_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column("id", sa.String(26), primary_key=True)


def _timestamps() -> list:
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True
        ),
    ]


def upgrade() -> None:
    """Create the autoscuola schema."""
    print("Creating autoscuola schema...")

    op.create_table(
        "company_autoscuola_settings",
        _id(),
        sa.Column("company_id", sa.String(26), nullable=False, unique=True),
        sa.Column("timezone", sa.String(64), nullable=False),
        sa.Column("payments_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("lesson_price_30_cents", sa.Integer(), nullable=False),
        sa.Column("lesson_price_60_cents", sa.Integer(), nullable=False),
        sa.Column("penalty_cutoff_hours", sa.Integer(), nullable=False),
        sa.Column("penalty_percent", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="EUR"),
        sa.Column("gateway_destination_account", sa.String(255), nullable=True),
        sa.Column("invoicing_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("invoice_vat_rule_ref", sa.String(100), nullable=True),
        sa.Column("invoice_payment_method_ref", sa.String(100), nullable=True),
        sa.Column("lesson_policy", sa.JSON(), nullable=True),
        sa.Column("booking_slot_durations", sa.JSON(), nullable=True),
        sa.Column("proposal_ttl_hours", sa.Integer(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "company_resources",
        _id(),
        sa.Column("company_id", sa.String(26), nullable=False),
        sa.Column("owner_type", sa.String(20), nullable=False),
        sa.Column("owner_id", sa.String(26), nullable=False),
        sa.Column("display_name", sa.String(200), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint(
            "company_id", "owner_type", "owner_id", name="uq_company_resource_owner"
        ),
        sa.CheckConstraint(
            "owner_type IN ('student', 'instructor', 'vehicle')",
            name="ck_company_resources_owner_type",
        ),
    )
    op.create_index("ix_company_resources_company_id", "company_resources", ["company_id"])

    op.create_table(
        "availability_windows",
        _id(),
        sa.Column("company_id", sa.String(26), nullable=False),
        sa.Column("owner_type", sa.String(20), nullable=False),
        sa.Column("owner_id", sa.String(26), nullable=False),
        sa.Column(
            "days_of_week",
            sa.String(255).with_variant(postgresql.ARRAY(sa.Integer()), "postgresql"),
            nullable=False,
        ),
        sa.Column("start_minutes", sa.Integer(), nullable=False),
        sa.Column("end_minutes", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("company_id", "owner_type", "owner_id", name="uq_availability_owner"),
        sa.CheckConstraint(
            "start_minutes >= 0 AND end_minutes <= 1440 AND end_minutes > start_minutes",
            name="ck_availability_window_minutes",
        ),
    )
    op.create_index("ix_availability_windows_company_id", "availability_windows", ["company_id"])
    op.create_index("ix_availability_windows_owner_id", "availability_windows", ["owner_id"])

    op.create_table(
        "appointments",
        _id(),
        sa.Column("company_id", sa.String(26), nullable=False),
        sa.Column("student_id", sa.String(26), nullable=False),
        sa.Column("case_id", sa.String(26), nullable=True),
        sa.Column("instructor_id", sa.String(26), nullable=False),
        sa.Column("vehicle_id", sa.String(26), nullable=False),
        sa.Column("lesson_type", sa.String(30), nullable=False, server_default="guida"),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="scheduled"),
        sa.Column("proposal_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_kind", sa.String(30), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("replaced_by_appointment_id", sa.String(26), nullable=True),
        sa.Column("payment_required", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("payment_status", sa.String(30), nullable=False, server_default="not_required"),
        sa.Column(
            "payment_status_locked", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("price_amount_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("penalty_amount_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("penalty_cutoff_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_amount_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(3), nullable=False, server_default="EUR"),
        sa.Column("invoice_id", sa.String(100), nullable=True),
        sa.Column("invoice_status", sa.String(30), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("ends_at > starts_at", name="ck_appointments_time_order"),
        sa.CheckConstraint(
            "status IN ('scheduled', 'confirmed', 'proposal', 'checked_in', "
            "'completed', 'no_show', 'cancelled')",
            name="ck_appointments_status",
        ),
        sa.CheckConstraint("paid_amount_cents >= 0", name="ck_appointments_paid_non_negative"),
        sa.CheckConstraint(
            "price_amount_cents >= 0 AND penalty_amount_cents >= 0",
            name="ck_appointments_amounts_non_negative",
        ),
    )
    op.create_index("ix_appointments_id", "appointments", ["id"])
    op.create_index("ix_appointments_company_id", "appointments", ["company_id"])
    op.create_index("ix_appointments_student_id", "appointments", ["student_id"])
    op.create_index("ix_appointments_starts_at", "appointments", ["starts_at"])
    op.create_index(
        "ix_appointments_company_instructor_start",
        "appointments",
        ["company_id", "instructor_id", "starts_at"],
    )
    op.create_index(
        "ix_appointments_company_vehicle_start",
        "appointments",
        ["company_id", "vehicle_id", "starts_at"],
    )
    op.create_index(
        "ix_appointments_company_student_start",
        "appointments",
        ["company_id", "student_id", "starts_at"],
    )

    op.create_table(
        "resource_slot_holds",
        _id(),
        sa.Column("appointment_id", sa.String(26), nullable=False),
        sa.Column("company_id", sa.String(26), nullable=False),
        sa.Column("owner_type", sa.String(20), nullable=False),
        sa.Column("owner_id", sa.String(26), nullable=False),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="held"),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("status IN ('held', 'released')", name="ck_slot_holds_status"),
    )
    op.create_index("ix_resource_slot_holds_appointment_id", "resource_slot_holds", ["appointment_id"])
    op.create_index(
        "ix_slot_holds_owner_range",
        "resource_slot_holds",
        ["company_id", "owner_type", "owner_id", "starts_at"],
    )

    op.create_table(
        "reposition_tasks",
        _id(),
        sa.Column("company_id", sa.String(26), nullable=False),
        sa.Column("source_appointment_id", sa.String(26), nullable=False),
        sa.Column("student_id", sa.String(26), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("reason", sa.String(50), nullable=False),
        sa.Column("excluded_instructor_id", sa.String(26), nullable=True),
        sa.Column("excluded_vehicle_id", sa.String(26), nullable=True),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("matched_appointment_id", sa.String(26), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("source_appointment_id", name="uq_reposition_tasks_source"),
        sa.CheckConstraint(
            "status IN ('pending', 'matched', 'cancelled')", name="ck_reposition_tasks_status"
        ),
        sa.CheckConstraint("attempt_count >= 0", name="ck_reposition_tasks_attempts"),
    )
    op.create_index("ix_reposition_tasks_company_id", "reposition_tasks", ["company_id"])
    op.create_index("ix_reposition_tasks_student_id", "reposition_tasks", ["student_id"])
    op.create_index("ix_reposition_tasks_due", "reposition_tasks", ["status", "next_attempt_at"])

    op.create_table(
        "student_payment_profiles",
        _id(),
        sa.Column("company_id", sa.String(26), nullable=False),
        sa.Column("student_id", sa.String(26), nullable=False),
        sa.Column("gateway_customer_id", sa.String(255), nullable=False),
        sa.Column("default_payment_method_id", sa.String(255), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        *_timestamps(),
        sa.UniqueConstraint("company_id", "student_id", name="uq_payment_profile_student"),
    )
    op.create_index(
        "ix_student_payment_profiles_company_id", "student_payment_profiles", ["company_id"]
    )

    op.create_table(
        "appointment_payments",
        _id(),
        sa.Column("appointment_id", sa.String(26), nullable=False),
        sa.Column("company_id", sa.String(26), nullable=False),
        sa.Column("student_id", sa.String(26), nullable=False),
        sa.Column("phase", sa.String(30), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="EUR"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("idempotency_key", sa.String(200), nullable=True),
        sa.Column("failure_code", sa.String(100), nullable=True),
        sa.Column("failure_message", sa.Text(), nullable=True),
        sa.Column("gateway_payment_intent_id", sa.String(255), nullable=True),
        sa.Column("gateway_charge_id", sa.String(255), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("amount_cents > 0", name="ck_appointment_payments_amount_positive"),
        sa.CheckConstraint("attempt_count >= 0", name="ck_appointment_payments_attempts"),
        sa.CheckConstraint(
            "phase IN ('penalty', 'settlement', 'manual_recovery')",
            name="ck_appointment_payments_phase",
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'succeeded', 'failed', 'abandoned')",
            name="ck_appointment_payments_status",
        ),
    )
    op.create_index(
        "ix_appointment_payments_appointment_id", "appointment_payments", ["appointment_id"]
    )
    op.create_index("ix_appointment_payments_company_id", "appointment_payments", ["company_id"])
    op.create_index(
        "ix_appointment_payments_retry", "appointment_payments", ["status", "next_attempt_at"]
    )

    print("Autoscuola schema created")


def downgrade() -> None:
    """Drop every autoscuola table."""
    for table in (
        "appointment_payments",
        "student_payment_profiles",
        "reposition_tasks",
        "resource_slot_holds",
        "appointments",
        "availability_windows",
        "company_resources",
        "company_autoscuola_settings",
    ):
        op.drop_table(table)
