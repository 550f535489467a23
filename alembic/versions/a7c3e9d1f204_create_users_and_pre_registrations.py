"""create users and pre_registrations tables

Revision ID: a7c3e9d1f204
Revises:
Create Date: 2026-10-19 10:00:00.000000

This migration:
1. Creates the user_role and registration_status enum types
2. Creates the users table (admins and activated students)
3. Creates the pre_registrations table with its lookup indexes

users is created first because pre_registrations.usuario_id references it.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "a7c3e9d1f204"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    """Create users and pre_registrations."""
    user_role_enum = postgresql.ENUM("admin", "student", name="user_role", create_type=False)
    user_role_enum.create(op.get_bind(), checkfirst=True)

    registration_status_enum = postgresql.ENUM(
        "pendiente",
        "activo",
        "suspendido",
        "cancelado",
        name="registration_status",
        create_type=False,
    )
    registration_status_enum.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        *_timestamps(),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.Text(), nullable=False),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), nullable=False),
        sa.Column("phone", sa.String(length=20), nullable=True),
        sa.Column("dni", sa.String(length=8), nullable=True),
        sa.Column("role", user_role_enum, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("is_verified", sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_dni", "users", ["dni"], unique=True)

    op.create_table(
        "pre_registrations",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        *_timestamps(),
        sa.Column("nombre", sa.String(length=100), nullable=False),
        sa.Column("apellido", sa.String(length=100), nullable=False),
        sa.Column("dni", sa.String(length=8), nullable=False),
        sa.Column("codigo_estudiante", sa.String(length=11), nullable=False),
        sa.Column("estado_registro", registration_status_enum, nullable=False),
        sa.Column("fecha_creacion", sa.DateTime(timezone=True), nullable=False),
        sa.Column("fecha_vencimiento", sa.DateTime(timezone=True), nullable=False),
        sa.Column("fecha_completado", sa.DateTime(timezone=True), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("telefono", sa.String(length=20), nullable=True),
        sa.Column("perfil_pendiente", postgresql.JSON(), nullable=True),
        sa.Column("codigo_verificacion", sa.String(length=6), nullable=True),
        sa.Column("codigo_verificacion_expira", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ultimo_reenvio", sa.DateTime(timezone=True), nullable=True),
        sa.Column("intentos_reenvio", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("creado_por", postgresql.UUID(as_uuid=False), nullable=True),
        sa.Column("usuario_id", postgresql.UUID(as_uuid=False), nullable=True),
        sa.ForeignKeyConstraint(["usuario_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("dni", name="uq_pre_registrations_dni"),
        sa.UniqueConstraint("codigo_estudiante", name="uq_pre_registrations_codigo_estudiante"),
    )
    op.create_index(
        "ix_pre_registrations_estado_vencimiento",
        "pre_registrations",
        ["estado_registro", "fecha_vencimiento"],
    )
    op.create_index(
        "ix_pre_registrations_fecha_creacion", "pre_registrations", ["fecha_creacion"]
    )


def downgrade() -> None:
    """Drop pre_registrations and users with their enum types."""
    op.drop_index("ix_pre_registrations_fecha_creacion", table_name="pre_registrations")
    op.drop_index("ix_pre_registrations_estado_vencimiento", table_name="pre_registrations")
    op.drop_table("pre_registrations")

    op.drop_index("ix_users_dni", table_name="users")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")

    sa.Enum(name="registration_status").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="user_role").drop(op.get_bind(), checkfirst=True)
