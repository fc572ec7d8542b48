"""Main entrypoint for the launchtrade engine."""

import argparse
import asyncio
import json
import signal
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from launchtrade.config import LaunchTradeSettings, settings
from launchtrade.core.bus import EventBus
from launchtrade.core.errors import CheckpointError
from launchtrade.core.scheduler import Clock, SystemClock
from launchtrade.core.types import Event, EventType, Signal
from launchtrade.execution.paper_venue import PaperVenue
from launchtrade.execution.venue import Venue
from launchtrade.logging import get_logger, setup_logging
from launchtrade.notify import BusNotifier
from launchtrade.risk.channels import ChannelRegistry
from launchtrade.risk.manager import RiskManager
from launchtrade.risk.portfolio import PortfolioAnalyzer
from launchtrade.storage.checkpoint import CheckpointStore
from launchtrade.trading.lifecycle import TradeLifecycleManager

logger = get_logger(__name__)


def load_signals(path: str | Path) -> list[Signal]:
    """Read one JSON signal per line; blank lines and ``#`` comments are skipped."""
    signals: list[Signal] = []
    with open(path, encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            try:
                signals.append(Signal.model_validate_json(line))
            except ValidationError as e:
                logger.warning(f"Skipping invalid signal on line {line_no}: {e}")
    return signals


class TradingSystem:
    """Builds the object graph and runs it."""

    def __init__(
        self,
        cfg: LaunchTradeSettings | None = None,
        venue: Venue | None = None,
        bus: EventBus | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._cfg = cfg or settings
        self._clock = clock or SystemClock()
        self._bus = bus or EventBus()
        if venue is None:
            if not self._cfg.dry_run:
                raise ValueError("Live venue is not bundled; set DRY_RUN=true or pass a venue")
            venue = PaperVenue.from_settings(self._cfg, clock=self._clock, bus=self._bus)
        self._venue = venue
        self._channels = ChannelRegistry(cfg=self._cfg)
        self._risk = RiskManager(channels=self._channels, cfg=self._cfg)
        self._lifecycle = TradeLifecycleManager(
            venue=self._venue,
            risk=self._risk,
            channels=self._channels,
            notifier=BusNotifier(self._bus),
            cfg=self._cfg,
            clock=self._clock,
        )
        self._analyzer = PortfolioAnalyzer()
        self._running = False

        self._bus.subscribe(EventType.POSITION_OPENED, self._handle_position_event)
        self._bus.subscribe(EventType.POSITION_CLOSED, self._handle_position_event)

    @property
    def lifecycle(self) -> TradeLifecycleManager:
        return self._lifecycle

    @property
    def risk(self) -> RiskManager:
        return self._risk

    async def _handle_position_event(self, event: Event) -> None:
        position = event.data["position"]
        if event.event_type == EventType.POSITION_OPENED:
            logger.info(
                f"[EVENT] Opened {position.token_id} qty={position.quantity:.6g} "
                f"stop={position.stop_price:.10g}"
            )
        else:
            exit_type = event.data.get("exit_type")
            logger.info(
                f"[EVENT] Closed {position.token_id} via "
                f"{exit_type.value if exit_type else '?'} P/L ${position.realized_pnl:.2f}"
            )

    async def start(self) -> None:
        if self._running:
            return
        await self._bus.start()
        if isinstance(self._venue, PaperVenue):
            await self._venue.start()
        self._risk.start_session(await self._venue.get_balance())
        self._running = True
        logger.info(f"Trading system started (dry_run={self._cfg.dry_run})")

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        await self._lifecycle.shutdown()
        if isinstance(self._venue, PaperVenue):
            await self._venue.stop()
        await self._bus.flush()
        await self._bus.stop()
        logger.info("Trading system stopped")

    async def process_signal(self, sig: Signal) -> None:
        result = await self._lifecycle.open_trade(sig)
        if result.success:
            logger.info(
                f"Signal {sig.token_id}: opened ${result.usd_amount:.2f} at {result.entry_price:.10g}"
            )
        else:
            logger.info(f"Signal {sig.token_id}: not traded ({result.reason})")

    async def run(self, signals: list[Signal], hold_seconds: float = 0.0) -> dict[str, Any]:
        """Open trades for ``signals``, let them run, and return a summary."""
        await self.start()
        try:
            for sig in signals:
                await self.process_signal(sig)
            if hold_seconds > 0:
                await self._clock.sleep(hold_seconds)
            return await self.summary()
        finally:
            await self.stop()

    async def summary(self) -> dict[str, Any]:
        balance = await self._venue.get_balance()
        positions = self._lifecycle.get_positions()
        result: dict[str, Any] = {
            "balance": balance,
            "active_trades": await self._lifecycle.get_active_trades(),
            "channel_stats": self._lifecycle.get_channel_stats(),
            "risk": self._risk.get_status(),
            "portfolio": self._analyzer.analyze(positions),
        }
        if isinstance(self._venue, PaperVenue):
            result["paper"] = self._venue.get_portfolio_summary()
        return result


def _print_status(cfg: LaunchTradeSettings) -> None:
    try:
        state = CheckpointStore(cfg.paper_state_path).load()
    except CheckpointError as e:
        print(f"Unreadable paper checkpoint: {e}")
        return
    if state is None:
        print(f"No paper checkpoint at {cfg.paper_state_path}")
        return
    venue = PaperVenue(starting_balance=state.starting_balance)
    venue.load_state(state)
    print(json.dumps(venue.get_portfolio_summary(), indent=2))


def main() -> None:
    """Main entrypoint."""
    parser = argparse.ArgumentParser(description="launchtrade token trading engine")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    run_parser = subparsers.add_parser("run", help="Replay signals into the engine")
    run_parser.add_argument(
        "--signals", type=str, required=True, help="JSON-lines file with one signal per line"
    )
    run_parser.add_argument(
        "--hold",
        type=float,
        default=0.0,
        help="Seconds to keep positions running after the last signal",
    )
    subparsers.add_parser("status", help="Show the paper account from its checkpoint")

    args = parser.parse_args()

    setup_logging()

    if args.command == "run":
        signals = load_signals(args.signals)
        logger.info(f"Loaded {len(signals)} signals from {args.signals}")
        system = TradingSystem()

        async def run_with_signals() -> dict[str, Any]:
            loop = asyncio.get_running_loop()
            task = asyncio.current_task()
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.add_signal_handler(sig, task.cancel)
                except NotImplementedError:
                    pass
            return await system.run(signals, hold_seconds=args.hold)

        try:
            summary = asyncio.run(run_with_signals())
        except (KeyboardInterrupt, asyncio.CancelledError):
            logger.info("Interrupted, shutting down")
            sys.exit(130)
        print(json.dumps(summary, indent=2, default=str))

    elif args.command == "status":
        _print_status(settings)

    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
