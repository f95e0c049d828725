from __future__ import annotations

from dataclasses import replace

from services.api.app.db.models import Tenant
from services.api.app.pricing.calculator import PricingConfig
from sqlalchemy import select
from sqlalchemy.orm import Session


def get_tenant_by_slug(db: Session, slug: str) -> Tenant | None:
    stmt = select(Tenant).where(Tenant.slug == slug.strip().lower())
    return db.execute(stmt).scalar_one_or_none()


def pricing_config_for(tenant: Tenant, defaults: PricingConfig | None = None) -> PricingConfig:
    """Tenant overrides on top of the env defaults. Null columns keep the default."""

    base = defaults or PricingConfig.from_env()
    overrides: dict = {"min_order_cents": tenant.min_order_cents or 0}
    if tenant.tax_rate is not None:
        overrides["tax_rate"] = tenant.tax_rate
    if tenant.merchant_delivery_fee_cents is not None:
        overrides["merchant_delivery_fee_cents"] = tenant.merchant_delivery_fee_cents
    if tenant.processor_fee_rate is not None:
        overrides["processor_fee_rate"] = tenant.processor_fee_rate
    if tenant.processor_fee_fixed_cents is not None:
        overrides["processor_fee_fixed_cents"] = tenant.processor_fee_fixed_cents
    return replace(base, **overrides)
