from __future__ import annotations

import logging

from celery import shared_task

from payments import services
from payments.models import Payment

logger = logging.getLogger(__name__)


@shared_task(name="payments.poll_pending_mpesa_payments")
def poll_pending_mpesa_payments():
    """
    Query M-Pesa for pushes whose callback never arrived.
    Safe to run repeatedly; already reconciled payments are skipped.
    """
    checked = services.pending_payments().filter(provider=Payment.Provider.MPESA).count()
    settled = services.poll_pending_mpesa()
    logger.info("mpesa: poll finished", extra={"pending": checked, "settled": settled})
    return {"pending": checked, "settled": settled}
