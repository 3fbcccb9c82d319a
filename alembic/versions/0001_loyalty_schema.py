from __future__ import annotations

from alembic import op

from loyalty.core.database import Base
import loyalty.models  # noqa: F401

revision = "0001_loyalty_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # inclui o índice único parcial de coupon_redemptions.code (status = 'active')
    Base.metadata.create_all(bind=op.get_bind())


def downgrade() -> None:
    Base.metadata.drop_all(bind=op.get_bind())
