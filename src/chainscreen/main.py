"""
chainscreen - blockchain address screening and compliance case workflow.

Command line entry point: wires settings, logging, the SQL stores and the
Esplora chain source, then runs one command.
"""

import argparse
import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from chainscreen.cache import TTLCache
from chainscreen.chain.esplora import EsploraChainSource
from chainscreen.compliance.pipeline import CompliancePipeline
from chainscreen.compliance.registry import MonitoredAddressRegistry
from chainscreen.compliance.scheduler import ScreeningScheduler
from chainscreen.config import Settings, settings
from chainscreen.db.repositories import (
    SQLAttributionStore,
    SQLAuditTrail,
    SQLChangeLogStore,
    SQLComplianceTransactionStore,
    SQLEntityProfileStore,
    SQLLeaseLock,
    SQLMonitoredAddressStore,
    SQLOrganizationStore,
    SQLReferenceDataLoader,
)
from chainscreen.db.session import create_engine, create_sessionmaker, init_models
from chainscreen.errors import ChainscreenError
from chainscreen.reference.cache import ReferenceDataCache
from chainscreen.scoring.service import RiskScoringService

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@dataclass
class Components:
    """Fully wired application objects."""

    scoring: RiskScoringService
    registry: MonitoredAddressRegistry
    pipeline: CompliancePipeline
    scheduler: ScreeningScheduler
    chain_source: EsploraChainSource


async def build_components(config: Settings) -> tuple[Components, AsyncEngine]:
    """Create engine, stores and services from settings."""
    engine = create_engine(config.database_url)
    await init_models(engine)
    sessionmaker = create_sessionmaker(engine)

    chain_source = EsploraChainSource(config.chain_api_url, timeout=config.chain_api_timeout_seconds)
    organizations = SQLOrganizationStore(sessionmaker)
    addresses = SQLMonitoredAddressStore(sessionmaker)

    scoring = RiskScoringService(
        attribution_store=SQLAttributionStore(sessionmaker),
        profile_store=SQLEntityProfileStore(sessionmaker),
        reference=ReferenceDataCache(
            SQLReferenceDataLoader(sessionmaker),
            ttl_seconds=config.reference_cache_ttl_seconds,
        ),
        chain_source=chain_source,
        weights=config.scoring_weights(),
        traversal_config=config.traversal_config(),
        result_cache=TTLCache(config.score_cache_ttl_seconds, max_entries=10_000),
    )
    registry = MonitoredAddressRegistry(addresses, SQLChangeLogStore(sessionmaker), organizations)
    pipeline = CompliancePipeline(
        scoring=scoring,
        chain_source=chain_source,
        addresses=addresses,
        cases=SQLComplianceTransactionStore(sessionmaker),
        organizations=organizations,
        audit=SQLAuditTrail(sessionmaker, config.audit_hmac_key.encode("utf-8")),
        tx_limit=config.screening_tx_limit,
    )
    scheduler = ScreeningScheduler(
        pipeline,
        interval_seconds=config.screening_interval_minutes * 60,
        lease_lock=SQLLeaseLock(sessionmaker),
        lease_ttl_seconds=config.screening_lock_ttl_seconds,
    )
    components = Components(
        scoring=scoring,
        registry=registry,
        pipeline=pipeline,
        scheduler=scheduler,
        chain_source=chain_source,
    )
    return components, engine


async def run_command(args: argparse.Namespace, config: Settings) -> int:
    components, engine = await build_components(config)
    try:
        if args.command == "score-address":
            result = await components.scoring.score_address(args.address, max_hops=args.max_hops)
            print(json.dumps(result.to_dict(), indent=2))
        elif args.command == "score-tx":
            result = await components.scoring.score_transaction(args.txid, max_hops=args.max_hops)
            print(json.dumps(result.to_dict(), indent=2))
        elif args.command == "screen":
            report = await components.pipeline.process_organization_transactions(args.organization)
            print(json.dumps(report.to_dict(), indent=2))
        elif args.command == "scheduler":
            await components.scheduler.run_forever()
        return 0
    except ChainscreenError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1
    finally:
        await components.chain_source.close()
        await engine.dispose()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chainscreen",
        description="Blockchain address risk screening and compliance workflow",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    score_address = sub.add_parser("score-address", help="Score a single address")
    score_address.add_argument("address", help="Blockchain address")
    score_address.add_argument("--max-hops", type=int, default=None, help="Graph traversal depth")

    score_tx = sub.add_parser("score-tx", help="Score a transaction")
    score_tx.add_argument("txid", help="Transaction id")
    score_tx.add_argument("--max-hops", type=int, default=None, help="Graph traversal depth")

    screen = sub.add_parser("screen", help="Screen one organization's monitored addresses now")
    screen.add_argument("--organization", required=True, help="Organization id")

    sub.add_parser("scheduler", help="Run periodic screening until interrupted")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(run_command(args, settings))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    exit(main())
