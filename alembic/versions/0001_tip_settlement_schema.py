"""tip settlement schema

Revision ID: 0001_tip_settlement_schema
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""

from __future__ import annotations

from alembic import op


revision = "0001_tip_settlement_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto;")
    op.execute("CREATE SCHEMA IF NOT EXISTS app;")

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.users (
            id uuid DEFAULT gen_random_uuid() PRIMARY KEY,
            email text,
            display_name text,
            phone_number text,
            account_number text,
            account_name text,
            bank_code text,
            bank_name text,
            created_at timestamp with time zone DEFAULT now() NOT NULL,
            updated_at timestamp with time zone DEFAULT now() NOT NULL
        );
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.matches (
            id uuid DEFAULT gen_random_uuid() PRIMARY KEY,
            status text NOT NULL DEFAULT 'scheduled',
            home_score integer,
            away_score integer,
            kickoff_at timestamp with time zone,
            created_at timestamp with time zone DEFAULT now() NOT NULL,
            updated_at timestamp with time zone DEFAULT now() NOT NULL
        );
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.tips (
            id uuid DEFAULT gen_random_uuid() PRIMARY KEY,
            tipster_user_id uuid REFERENCES app.users(id),
            status text NOT NULL DEFAULT 'PENDING'
                CHECK (status IN ('PENDING', 'WON', 'LOST', 'VOID', 'CANCELLED')),
            is_ai boolean NOT NULL DEFAULT false,
            title text,
            created_at timestamp with time zone DEFAULT now() NOT NULL,
            updated_at timestamp with time zone DEFAULT now() NOT NULL
        );
        CREATE INDEX IF NOT EXISTS ix_tips_status_created ON app.tips (status, created_at);
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.tip_selections (
            id uuid DEFAULT gen_random_uuid() PRIMARY KEY,
            tip_id uuid NOT NULL REFERENCES app.tips(id) ON DELETE CASCADE,
            match_id uuid NOT NULL REFERENCES app.matches(id),
            prediction_type text NOT NULL,
            prediction_value text NOT NULL,
            odds numeric(10, 2),
            is_correct boolean,
            is_void boolean NOT NULL DEFAULT false,
            evaluation_reason text,
            evaluated_at timestamp with time zone
        );
        CREATE INDEX IF NOT EXISTS ix_tip_selections_tip ON app.tip_selections (tip_id);
        CREATE INDEX IF NOT EXISTS ix_tip_selections_unevaluated
            ON app.tip_selections (tip_id)
            WHERE is_correct IS NULL AND is_void = false;
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.purchases (
            id uuid DEFAULT gen_random_uuid() PRIMARY KEY,
            tip_id uuid NOT NULL REFERENCES app.tips(id),
            buyer_id uuid NOT NULL REFERENCES app.users(id),
            amount numeric(12, 2) NOT NULL CHECK (amount > 0),
            status text NOT NULL DEFAULT 'PENDING'
                CHECK (status IN ('PENDING', 'COMPLETED', 'FAILED', 'CANCELLED')),
            payment_gateway text,
            tip_outcome text,
            created_at timestamp with time zone DEFAULT now() NOT NULL,
            updated_at timestamp with time zone DEFAULT now() NOT NULL
        );
        CREATE INDEX IF NOT EXISTS ix_purchases_tip ON app.purchases (tip_id);
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.escrows (
            id uuid DEFAULT gen_random_uuid() PRIMARY KEY,
            purchase_id uuid NOT NULL REFERENCES app.purchases(id),
            amount numeric(12, 2) NOT NULL,
            status text NOT NULL DEFAULT 'PENDING'
                CHECK (status IN ('PENDING', 'HELD', 'RELEASED', 'REFUNDED')),
            is_ai_tip boolean NOT NULL DEFAULT false,
            held_at timestamp with time zone,
            released_at timestamp with time zone,
            released_to uuid REFERENCES app.users(id),
            release_type text CHECK (release_type IN ('PLATFORM_REVENUE', 'TIPSTER_PAYOUT', 'BUYER_REFUND')),
            platform_fee numeric(12, 2) NOT NULL DEFAULT 0,
            platform_fee_percentage numeric(5, 2) NOT NULL DEFAULT 0,
            tipster_earnings numeric(12, 2) NOT NULL DEFAULT 0,
            created_at timestamp with time zone DEFAULT now() NOT NULL,
            updated_at timestamp with time zone DEFAULT now() NOT NULL,
            CONSTRAINT uq_escrows_purchase UNIQUE (purchase_id),
            CONSTRAINT ck_escrows_fee_split CHECK (
                status <> 'RELEASED'
                OR release_type <> 'TIPSTER_PAYOUT'
                OR platform_fee + tipster_earnings = amount
            )
        );
        CREATE INDEX IF NOT EXISTS ix_escrows_status ON app.escrows (status, created_at);
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.payments (
            id uuid DEFAULT gen_random_uuid() PRIMARY KEY,
            amount numeric(12, 2) NOT NULL,
            currency text NOT NULL,
            status text NOT NULL DEFAULT 'PENDING'
                CHECK (status IN ('PENDING', 'COMPLETED', 'FAILED', 'CANCELLED')),
            payment_type text NOT NULL DEFAULT 'TIP_PURCHASE'
                CHECK (payment_type IN ('TIP_PURCHASE', 'TIPSTER_PAYOUT', 'ESCROW_REFUND', 'PLATFORM_REVENUE')),
            purchase_id uuid REFERENCES app.purchases(id),
            escrow_id uuid REFERENCES app.escrows(id),
            recipient_user_id uuid REFERENCES app.users(id),
            is_payout boolean NOT NULL DEFAULT false,
            gateway_id text,
            order_number text,
            payment_reference text,
            provider_transaction_id text,
            provider_status text,
            provider_reference text,
            checkout_url text,
            network text,
            account_name text,
            account_number text,
            response_data jsonb,
            webhook_fingerprint text,
            error_message text,
            description text,
            provider_processed_at timestamp with time zone,
            email_notification_sent boolean NOT NULL DEFAULT false,
            webhook_notification_sent boolean NOT NULL DEFAULT false,
            last_notification_sent_at timestamp with time zone,
            retry_count integer NOT NULL DEFAULT 0,
            last_retry_at timestamp with time zone,
            created_at timestamp with time zone DEFAULT now() NOT NULL,
            updated_at timestamp with time zone DEFAULT now() NOT NULL
        );
        CREATE UNIQUE INDEX IF NOT EXISTS uq_payments_reference
            ON app.payments (payment_reference)
            WHERE payment_reference IS NOT NULL;
        CREATE INDEX IF NOT EXISTS ix_payments_provider_tx
            ON app.payments (gateway_id, provider_transaction_id);
        CREATE INDEX IF NOT EXISTS ix_payments_pending_purchase
            ON app.payments (created_at)
            WHERE status = 'PENDING' AND payment_type = 'TIP_PURCHASE';
        CREATE INDEX IF NOT EXISTS ix_payments_purchase ON app.payments (purchase_id);
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.payment_gateways (
            id text PRIMARY KEY,
            name text NOT NULL,
            status text NOT NULL DEFAULT 'inactive'
                CHECK (status IN ('active', 'inactive', 'maintenance')),
            supported_methods text[] NOT NULL DEFAULT '{}',
            supported_currencies text[] NOT NULL DEFAULT '{}',
            configuration jsonb NOT NULL DEFAULT '{}'::jsonb,
            payment_method_handling jsonb NOT NULL DEFAULT '{}'::jsonb,
            created_at timestamp with time zone DEFAULT now() NOT NULL,
            updated_at timestamp with time zone DEFAULT now() NOT NULL
        );
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.app_settings (
            id uuid DEFAULT gen_random_uuid() PRIMARY KEY,
            platform_commission_rate numeric(5, 4) NOT NULL
                CHECK (platform_commission_rate >= 0 AND platform_commission_rate <= 1),
            is_active boolean NOT NULL DEFAULT true,
            created_at timestamp with time zone DEFAULT now() NOT NULL,
            updated_at timestamp with time zone DEFAULT now() NOT NULL
        );
        """
    )

    # gateways start inactive; operators activate them once credentials are set
    op.execute(
        """
        INSERT INTO app.payment_gateways (
          id, name, status, supported_methods, supported_currencies, payment_method_handling
        ) VALUES
          ('palmpay', 'PalmPay', 'inactive', ARRAY['mobile_money'], ARRAY['GHS', 'NGN', 'KES', 'TZS'],
           '{"mobile_money": "checkout_url"}'::jsonb),
          ('ogateway', 'OGateway', 'inactive', ARRAY['mobile_money', 'bank_transfer'], ARRAY['GHS', 'NGN', 'USD'],
           '{"mobile_money": "direct", "bank_transfer": "direct"}'::jsonb)
        ON CONFLICT (id) DO NOTHING;
        """
    )


def downgrade() -> None:
    op.execute(
        """
        DROP TABLE IF EXISTS app.app_settings;
        DROP TABLE IF EXISTS app.payment_gateways;
        DROP TABLE IF EXISTS app.payments;
        DROP TABLE IF EXISTS app.escrows;
        DROP TABLE IF EXISTS app.purchases;
        DROP TABLE IF EXISTS app.tip_selections;
        DROP TABLE IF EXISTS app.tips;
        DROP TABLE IF EXISTS app.matches;
        DROP TABLE IF EXISTS app.users;
        """
    )
