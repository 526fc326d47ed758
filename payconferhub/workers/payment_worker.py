"""
Payment aggregation worker.

Runs the monthly payment aggregation for one or more partners against the
PostgreSQL plan store and prints each resulting payment.
"""
import argparse
import asyncio
import signal
import sys
from typing import Dict, List, Optional, Sequence, Union

from payconferhub.config import Settings, get_settings
from payconferhub.core.aggregator import PaymentAggregator
from payconferhub.core.ledger import LedgerWriter
from payconferhub.core.models import Payment
from payconferhub.database.connection import close_db, get_session_factory, init_db
from payconferhub.database.plan_repository import SqlPlanStore
from payconferhub.monitoring.logging import get_logger, setup_logging

logger = get_logger(__name__)


async def aggregate_partners(
    aggregator: PaymentAggregator, partners: Sequence[str]
) -> Dict[str, Union[Payment, Exception]]:
    """
    Aggregate every partner concurrently.

    Returns:
        Dict[str, Union[Payment, Exception]]: Payment, or the error, per partner
    """
    results = await asyncio.gather(
        *(aggregator.aggregate(partner) for partner in partners),
        return_exceptions=True,
    )
    outcome: Dict[str, Union[Payment, Exception]] = {}
    for partner, result in zip(partners, results):
        if isinstance(result, Exception):
            logger.error("partner_aggregation_failed", partner=partner, error=str(result))
        elif isinstance(result, BaseException):
            raise result
        outcome[partner] = result
    return outcome


async def run_worker(
    partners: Sequence[str],
    settings: Optional[Settings] = None,
    create_tables: bool = False,
) -> int:
    """
    Run the aggregation for ``partners``; SIGINT/SIGTERM cancel the run.

    Args:
        partners: Partner identifiers
        settings: Application settings (defaults to the environment)
        create_tables: Create missing tables before aggregating

    Returns:
        int: Process exit code (0 if every partner succeeded)
    """
    settings = settings or get_settings()
    setup_logging(settings)

    logger.info("payment_worker_starting", partners=list(partners))

    if create_tables:
        await init_db(settings)

    store = SqlPlanStore(get_session_factory(settings))
    aggregator = PaymentAggregator.from_settings(
        store, settings, ledger_writer=LedgerWriter(settings.ledger_path)
    )

    run = asyncio.current_task()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, run.cancel)

    try:
        outcome = await aggregate_partners(aggregator, partners)
    except asyncio.CancelledError:
        logger.warning("payment_worker_cancelled")
        return 130
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        await close_db()
        logger.info("payment_worker_stopped")

    exit_code = 0
    for partner, result in outcome.items():
        if isinstance(result, Payment):
            print(f"{result.partner}\t{result.total_value}\t{result.payment_date.isoformat()}")
        else:
            print(f"{partner}\tERROR\t{result}", file=sys.stderr)
            exit_code = 1
    return exit_code


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Partner payment aggregation worker")
    parser.add_argument("partners", nargs="+", help="Partner identifiers to aggregate")
    parser.add_argument("--ledger-path", help="Override the ledger file location")
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create the plano_venda table if it does not exist",
    )
    args = parser.parse_args(argv)

    settings = get_settings()
    if args.ledger_path:
        settings = settings.model_copy(update={"ledger_path": args.ledger_path})

    return asyncio.run(run_worker(args.partners, settings, create_tables=args.create_tables))


if __name__ == "__main__":
    sys.exit(main())
