from __future__ import annotations

import argparse
from decimal import Decimal

from services.api.app.db.database import db_session
from services.api.app.db.init_db import init_db
from services.api.app.db.models import GiftCard, Tenant
from services.api.app.services.giftcard_base import normalize_gift_card_code


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed a demo Tablefront restaurant")
    parser.add_argument("--tenant-id", default="t-demo")
    parser.add_argument("--tenant-slug", default="demo")
    parser.add_argument("--tenant-name", default="Demo Kitchen")
    parser.add_argument("--tax-rate", default=None, help="Overrides TABLEFRONT_TAX_RATE")
    parser.add_argument("--min-order-cents", type=int, default=0)
    args = parser.parse_args()

    init_db()

    db = db_session()
    try:
        if db.get(Tenant, args.tenant_id) is None:
            db.add(
                Tenant(
                    id=args.tenant_id,
                    slug=args.tenant_slug.strip().lower(),
                    name=args.tenant_name,
                    tax_rate=Decimal(args.tax_rate) if args.tax_rate else None,
                    min_order_cents=args.min_order_cents,
                )
            )

        # Demo gift cards: one that covers a small order, one partial, one spent.
        for raw_code, balance in (
            ("GIFT-DEMO-2500", 2500),
            ("GIFT-DEMO-1000", 1000),
            ("GIFT-DEMO-0000", 0),
        ):
            code = normalize_gift_card_code(raw_code)
            if db.get(GiftCard, code) is None:
                db.add(
                    GiftCard(
                        code=code,
                        tenant_id=args.tenant_id,
                        initial_balance_cents=max(balance, 2500),
                        current_balance_cents=balance,
                        recipient_name="Demo Guest",
                    )
                )

        db.commit()
        print(f"Seeded tenant={args.tenant_slug} gift_cards=3")
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    raise SystemExit(main())
