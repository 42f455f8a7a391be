"""
Reconcile Commissions Handler.
Triggered by EventBridge on a schedule.

Finds approved tasks whose commission record was not written after the
escrow release and writes it. Records are keyed by task id, so overlapping
runs cannot create duplicates. The same run rejects applications still
pending on tasks that already selected someone.
"""
from instantjobs.factory import default_engine
from instantjobs.logging import logger


def handler(event, context):
    logger.info("Running commission reconciliation...")
    engine = default_engine()
    written = engine.reconcile_commissions()
    rejected = engine.sweep_stale_applications()
    return {'written': written, 'rejected': rejected}
