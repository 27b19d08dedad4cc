"""
Position Engine - Main Entry Point

Revaluates open positions of the simulated trading dashboard and settles
them into user wallets.

Usage:
    # Check configuration
    python main.py --check

    # Initialize database
    python main.py --init-db

    # Run a single revaluation pass and exit
    python main.py --tick

    # Run the revaluation loop until interrupted
    python main.py --run

    # Show a user's trading loss summary for the last 30 days
    python main.py --summary user@example.com --days 30
"""

import argparse
import asyncio
import signal
import sys
from pathlib import Path
from typing import Dict, Optional

# Add src to path
sys.path.insert(0, str(Path(__file__).parent))

import structlog

from src.core.config import engine_config
from src.core.engine import PositionEngine
from src.storage.database import Database
from src.utils.logging_config import setup_logging

logger = structlog.get_logger(__name__)


class EngineApp:
    """
    Command line application around PositionEngine.

    Owns the database connection and shuts everything down on
    SIGINT/SIGTERM.
    """

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url
        self.database: Optional[Database] = None
        self.engine: Optional[PositionEngine] = None

        self._shutdown_event = asyncio.Event()
        self._initialized = False

    async def initialize(self):
        """Open the database and build the engine."""
        logger.info(
            "app.initializing",
            environment=engine_config.system.environment,
            interval_seconds=engine_config.revaluation.interval_seconds,
        )

        self.database = Database(self.database_url)
        await self.database.initialize()
        logger.info("app.database_initialized")

        self.engine = PositionEngine(self.database)

        self._initialized = True
        logger.info("app.initialized")

    async def run(self):
        """Run the revaluation loop until a shutdown signal arrives."""
        if not self._initialized:
            raise RuntimeError("App not initialized. Call initialize() first.")

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._signal_handler)

        try:
            await self.engine.start()
            await self._shutdown_event.wait()
        except Exception as e:
            logger.error("app.error", error=str(e), exc_info=True)
            raise
        finally:
            await self.shutdown()

    async def shutdown(self):
        """Perform graceful shutdown."""
        logger.info("app.shutting_down")

        if self.engine:
            await self.engine.stop()

        if self.database:
            await self.database.close()

        logger.info("app.shutdown_complete")

    def _signal_handler(self):
        logger.info("app.shutdown_signal_received")
        self._shutdown_event.set()


def check_configuration() -> Dict:
    """
    Check if configuration is valid.

    Returns:
        Dictionary with validation results
    """
    validation = engine_config.validate_configuration()
    warnings = []

    if engine_config.is_production and engine_config.database.database_url.startswith("sqlite"):
        warnings.append("⚠️  SQLite database in production")

    return {
        "valid": validation["valid"],
        "issues": validation["issues"],
        "warnings": warnings,
        "environment": engine_config.system.environment,
        "database_url": engine_config.database.database_url,
    }


def print_summary(email: str, days: int, summary) -> None:
    print("\n" + "=" * 60)
    print(f"   TRADING LOSS SUMMARY - {email} (last {days} days)")
    print("=" * 60)
    print(f"\n   Total loss:       {summary.total_loss}")
    print(f"   Total investment: {summary.total_investment}")
    print(f"   Average loss:     {summary.average_loss_percentage}%")
    print(f"   Losing positions: {summary.position_count}")
    print("\n" + "=" * 60)


async def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Position Engine - revaluation and settlement of simulated positions"
    )

    parser.add_argument(
        "--check", action="store_true", help="Check configuration and exit"
    )
    parser.add_argument(
        "--init-db", action="store_true", help="Initialize database and exit"
    )
    parser.add_argument(
        "--tick", action="store_true", help="Run one revaluation pass and exit"
    )
    parser.add_argument(
        "--run", action="store_true", help="Run the revaluation loop until interrupted"
    )
    parser.add_argument(
        "--summary", metavar="EMAIL", help="Print a user's trading loss summary"
    )
    parser.add_argument(
        "--days", type=int, default=30, help="Summary window in days (default: 30)"
    )
    parser.add_argument(
        "--database-url", help="Override DATABASE_URL"
    )

    args = parser.parse_args()

    setup_logging()

    config_check = check_configuration()
    for warning in config_check["warnings"]:
        print(warning)

    if args.check:
        print("\n" + "=" * 60)
        print("           CONFIGURATION CHECK")
        print("=" * 60)

        if config_check["valid"]:
            print("\n✓ Configuration is valid")
        else:
            print("\n✗ Configuration errors:")
            for issue in config_check["issues"]:
                print(f"   - {issue}")

        print(f"\nEnvironment: {config_check['environment']}")
        print(f"Database: {config_check['database_url']}")
        print("\n" + "=" * 60)
        return

    if not config_check["valid"]:
        print("\n✗ Configuration errors:")
        for issue in config_check["issues"]:
            print(f"   - {issue}")
        print("\nPlease check your .env file and try again.")
        return

    if args.init_db:
        print("\n📦 Initializing database...")
        db = Database(args.database_url)
        await db.initialize()
        print("✓ Database initialized successfully")
        await db.close()
        return

    app = EngineApp(database_url=args.database_url)

    try:
        await app.initialize()

        if args.tick:
            try:
                report = await app.engine.tick()
                print(
                    f"✓ Revaluated {report.valued} positions "
                    f"({report.persisted} written, {report.paused} paused, {report.errors} errors)"
                )
            finally:
                await app.shutdown()
            return

        if args.summary:
            try:
                summary = await app.engine.loss_summary(args.summary, days=args.days)
                print_summary(args.summary, args.days, summary)
            finally:
                await app.shutdown()
            return

        if args.run:
            await app.run()
            return

        parser.print_help()
        await app.shutdown()

    except KeyboardInterrupt:
        print("\n\nShutdown requested by user...")
    except Exception as e:
        logger.error("app.fatal_error", error=str(e), exc_info=True)
        print(f"\n✗ Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
