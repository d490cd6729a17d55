"""
Yield Pilot Main Entry Point

Runs the trading controller against paper collaborators: a static yield
feed ranked by the RiskScorer, a paper executor that doubles as the
portfolio source, and an in-memory audit store.
"""

import asyncio
import logging
import signal
from typing import Any, Dict, List

from .adapters import InMemoryAuditStore, PaperExecutor, ScoringYieldSource, StaticYieldFeed
from .bus import EventBus
from .config import YieldPilotSettings
from .core.clock import SystemClock
from .core.error_handling import ConfigError
from .scoring import RiskScorer
from .trading import TradingController
from .types import TradingEvent, TradingEventType, YieldOpportunity, YieldType


logger = logging.getLogger(__name__)

# Global service instances
services: Dict[str, Any] = {}


DEMO_QUOTES: List[YieldOpportunity] = [
    YieldOpportunity(protocol="kamino", asset="USDC", apy=8.5, tvl=250_000_000,
                     yield_type=YieldType.LENDING),
    YieldOpportunity(protocol="marinade", asset="mSOL", apy=7.2, tvl=1_200_000_000,
                     yield_type=YieldType.STAKING),
    YieldOpportunity(protocol="jito", asset="JitoSOL", apy=7.8, tvl=900_000_000,
                     yield_type=YieldType.STAKING),
    YieldOpportunity(protocol="drift", asset="USDC", apy=9.4, tvl=80_000_000,
                     yield_type=YieldType.LENDING),
    YieldOpportunity(protocol="newfarm", asset="BONK", apy=85.0, tvl=400_000,
                     yield_type=YieldType.LIQUIDITY,
                     metadata={"apy_base": 5.0, "apy_reward": 80.0}),
]


def load_configuration() -> YieldPilotSettings:
    """Load configuration from environment and .env"""
    try:
        return YieldPilotSettings.load_from_env()
    except ConfigError as e:
        logger.error(f"Error loading configuration: {e.message}")
        raise


def log_event(event: TradingEvent) -> None:
    """Log controller events that need operator attention."""
    if event.type == TradingEventType.ALERT:
        logger.info(f"ALERT [{event.data.get('type')}] {event.data.get('message')}")
    elif event.type in (TradingEventType.CIRCUIT_BREAKER, TradingEventType.EMERGENCY_STOP):
        logger.warning(f"{event.type.value}: {event.data.get('reason')}")
    elif event.type == TradingEventType.TRADE_EXECUTED:
        logger.info(f"Trade executed: {event.data.get('tx_id')}")
    elif event.type == TradingEventType.TRADE_FAILED:
        logger.warning(f"Trade failed: {event.data.get('error')}")


def initialize_services(settings: YieldPilotSettings) -> TradingController:
    """Wire the controller with paper collaborators"""
    clock = SystemClock()
    event_bus = EventBus()
    event_bus.subscribe("operator_log", log_event)
    services['event_bus'] = event_bus

    executor = PaperExecutor(initial_cash_usd=settings.paper_wallet_usd, clock=clock)
    services['executor'] = executor

    scorer = RiskScorer(clock=clock)
    yield_source = ScoringYieldSource(StaticYieldFeed(DEMO_QUOTES), scorer, on_ranked=executor.update_rates)
    services['yield_source'] = yield_source

    audit_store = InMemoryAuditStore()
    services['audit_store'] = audit_store

    controller = TradingController(
        yield_source=yield_source,
        portfolio_source=executor,
        executor=executor,
        strategy=settings.strategy,
        config=settings.trading,
        event_bus=event_bus,
        audit_store=audit_store,
        clock=clock,
        portfolio_refresh_seconds=settings.portfolio_refresh_seconds,
        max_tracked_yields=settings.max_tracked_yields,
    )
    services['controller'] = controller

    logger.info("All services initialized successfully")
    return controller


async def main() -> None:
    settings = load_configuration()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    controller = initialize_services(settings)
    shutdown = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.set)

    result = await controller.start()
    if not result:
        logger.error(f"Failed to start controller: {result.reason}")
        return

    logger.info("Yield pilot running, press Ctrl+C to stop")
    try:
        await shutdown.wait()
    finally:
        logger.info("Shutting down yield pilot...")
        await controller.stop()
        await controller.drain()
        await services['event_bus'].drain()
        logger.info(controller.get_status_summary())
        logger.info("Yield pilot shutdown complete")


if __name__ == "__main__":
    asyncio.run(main())
