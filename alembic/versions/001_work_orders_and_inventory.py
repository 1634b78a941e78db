"""Work orders, spare parts and the inventory log.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

from alembic import op


# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.execute("""
        CREATE TABLE work_orders (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            work_order_number TEXT UNIQUE NOT NULL,
            title TEXT NOT NULL,
            description TEXT,
            asset_id UUID,
            priority TEXT NOT NULL DEFAULT 'Medium'
                CHECK (priority IN ('Low', 'Medium', 'High', 'Critical')),
            status TEXT NOT NULL DEFAULT 'Open'
                CHECK (status IN ('Open', 'In Progress', 'On Hold', 'Completed', 'Cancelled')),
            work_order_type TEXT
                CHECK (work_order_type IN ('Preventive', 'Corrective', 'Inspection', 'Warranty', 'Emergency')),
            assigned_to UUID,
            due_date TIMESTAMPTZ,
            estimated_cost NUMERIC(12, 2),
            completed_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)

    op.execute("CREATE INDEX idx_work_orders_status ON work_orders(status);")

    op.execute("""
        CREATE TABLE spare_parts (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            part_name TEXT NOT NULL,
            part_number TEXT UNIQUE NOT NULL,
            quantity INTEGER NOT NULL DEFAULT 0 CHECK (quantity >= 0),
            asset_id UUID,
            description TEXT,
            supplier TEXT,
            storage_location TEXT,
            minimum_threshold INTEGER NOT NULL DEFAULT 0,
            reorder_quantity INTEGER NOT NULL DEFAULT 0,
            unit_cost NUMERIC(12, 2) NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)

    # Append-only: no UPDATE or DELETE ever touches these rows
    op.execute("""
        CREATE TABLE inventory_logs (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            spare_part_id UUID NOT NULL REFERENCES spare_parts(id) ON DELETE CASCADE,
            change_amount INTEGER NOT NULL,
            resulting_quantity INTEGER NOT NULL CHECK (resulting_quantity >= 0),
            action TEXT NOT NULL CHECK (action IN ('add', 'remove', 'adjust')),
            performed_by TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)

    op.execute("CREATE INDEX idx_inventory_logs_part ON inventory_logs(spare_part_id, created_at DESC);")


def downgrade():
    op.execute("DROP TABLE IF EXISTS inventory_logs CASCADE")
    op.execute("DROP TABLE IF EXISTS spare_parts CASCADE")
    op.execute("DROP TABLE IF EXISTS work_orders CASCADE")
