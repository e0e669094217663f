"""Initial schema: purchase_intents, crypto_payments, licenses.

Revision ID: 0001_init
Revises:
Create Date: 2026-10-16 10:00:00
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ---------------------------------------------
    # purchase_intents
    # ---------------------------------------------
    op.create_table(
        "purchase_intents",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=32), nullable=False),
        sa.Column("product_type", sa.String(length=32), nullable=False),
        sa.Column("provider_product_id", sa.String(length=128), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("failed_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("license_key", sa.String(length=64), nullable=True),
        sa.Column("provider_payment_id", sa.String(length=128), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
    )
    op.create_index("ix_purchase_intents_user_id", "purchase_intents", ["user_id"])
    op.create_index("ix_purchase_intents_provider_payment_id", "purchase_intents", ["provider_payment_id"])
    op.create_index(
        "ix_purchase_intents_type_status_created",
        "purchase_intents",
        ["product_type", "status", "created_at"],
    )

    # ---------------------------------------------
    # crypto_payments
    # ---------------------------------------------
    op.create_table(
        "crypto_payments",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=32), nullable=False),
        sa.Column("product_type", sa.String(length=32), nullable=False),
        sa.Column("crypto_symbol", sa.String(length=8), nullable=False),
        sa.Column("crypto_amount", sa.Numeric(18, 8), nullable=False),
        sa.Column("usd_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("wallet_address", sa.String(length=128), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=False), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("txid", sa.String(length=128), nullable=True),
        sa.Column("license_key", sa.String(length=64), nullable=True),
    )
    op.create_index("ix_crypto_payments_user_id", "crypto_payments", ["user_id"])
    op.create_index("ix_crypto_payments_txid", "crypto_payments", ["txid"])
    op.create_index("ix_crypto_payments_status_expires", "crypto_payments", ["status", "expires_at"])

    # ---------------------------------------------
    # licenses
    # ---------------------------------------------
    op.create_table(
        "licenses",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("license_key", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.String(length=32), nullable=True),
        sa.Column("product_type", sa.String(length=32), nullable=False),
        sa.Column("provider_product_id", sa.String(length=128), nullable=True),
        sa.Column("source_payment_id", sa.String(length=128), nullable=False),
        sa.Column("payment_method", sa.String(length=16), nullable=False, server_default="fiat"),
        sa.Column("txid", sa.String(length=128), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
        sa.Column("expiration_date", sa.DateTime(timezone=False), nullable=False),
        sa.Column("expired_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("deactivated_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("deactivation_reason", sa.String(length=32), nullable=True),
        sa.Column("added_by", sa.String(length=32), nullable=True),
        sa.UniqueConstraint("license_key", name="uq_licenses_license_key"),
        sa.UniqueConstraint("source_payment_id", name="uq_licenses_source_payment_id"),
    )
    op.create_index("ix_licenses_license_key", "licenses", ["license_key"], unique=False)
    op.create_index("ix_licenses_user_id", "licenses", ["user_id"])
    op.create_index("ix_licenses_user_type_active", "licenses", ["user_id", "product_type", "is_active"])


def downgrade() -> None:
    op.drop_index("ix_licenses_user_type_active", table_name="licenses")
    op.drop_index("ix_licenses_user_id", table_name="licenses")
    op.drop_index("ix_licenses_license_key", table_name="licenses")
    op.drop_table("licenses")

    op.drop_index("ix_crypto_payments_status_expires", table_name="crypto_payments")
    op.drop_index("ix_crypto_payments_txid", table_name="crypto_payments")
    op.drop_index("ix_crypto_payments_user_id", table_name="crypto_payments")
    op.drop_table("crypto_payments")

    op.drop_index("ix_purchase_intents_type_status_created", table_name="purchase_intents")
    op.drop_index("ix_purchase_intents_provider_payment_id", table_name="purchase_intents")
    op.drop_index("ix_purchase_intents_user_id", table_name="purchase_intents")
    op.drop_table("purchase_intents")
