from __future__ import annotations

from services.api.app.checkout.calls import CallTimeouts
from services.api.app.checkout.orchestrator import CheckoutOrchestrator
from services.api.app.services.delivery_factory import get_delivery_adapter
from services.api.app.services.event_log import DbEventRecorder
from services.api.app.services.giftcard_factory import get_gift_card_ledger
from services.api.app.services.order_committer import OrderCommitter
from services.api.app.services.payment_factory import get_payment_adapter


def get_checkout_orchestrator() -> CheckoutOrchestrator:
    """Wire the orchestrator to the collaborators selected by env vars.

    Raises ``ValueError`` when an adapter name or a live adapter's secret is misconfigured.
    """

    return CheckoutOrchestrator(
        delivery=get_delivery_adapter(),
        payment=get_payment_adapter(),
        ledger=get_gift_card_ledger(),
        committer=OrderCommitter(),
        events=DbEventRecorder(),
        timeouts=CallTimeouts.from_env(),
    )
