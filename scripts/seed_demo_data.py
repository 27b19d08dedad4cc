#!/usr/bin/env python3
"""
Script to seed a demo user, symbols and outcome-control settings.

This is useful when:
- Trying the engine locally without the dashboard backend
- Checking revaluation with forced outcomes (--tick in main.py)

Usage:
    python scripts/seed_demo_data.py [--email demo@example.com] [--balance 10000]
"""
import argparse
import asyncio
import sys
from decimal import Decimal
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.core.models import OutcomeControl, OutcomeSettings, Symbol, User
from src.positions.settings import SettingsReader
from src.storage.database import Database

DEMO_SYMBOLS = [
    Symbol(symbol="BTCUSD", current_price=Decimal("45230")),
    Symbol(symbol="ETHUSD", current_price=Decimal("2450")),
    Symbol(
        symbol="EURUSD",
        current_price=Decimal("1.0850"),
        admin_controlled_outcome=OutcomeControl.FORCE_LOSS,
        loss_percentage=Decimal("3"),
    ),
    Symbol(
        symbol="XAUUSD",
        current_price=Decimal("2030"),
        admin_controlled_outcome=OutcomeControl.FORCE_PROFIT,
        profit_percentage=Decimal("5"),
    ),
]


async def seed(email: str, balance: Decimal, database_url=None):
    """
    Create the demo records.

    Args:
        email: Demo user email
        balance: Initial trading wallet balance
        database_url: Database to seed (default: from config)
    """
    print("=" * 70)
    print("Seeding demo data")
    print("=" * 70)

    database = Database(database_url)
    await database.initialize()

    try:
        user = await database.get_user_by_email(email)
        if user is None:
            user = User(
                email=email,
                full_name="Demo User",
                trading_wallet=balance,
                total_balance=balance,
            )
            await database.save_user(user)
            print(f"✓ Created user {email} with {balance} in the trading wallet")
        else:
            print(f"- User {email} already exists, skipping")

        existing = {s.symbol for s in await database.get_symbols(active_only=False)}
        for symbol in DEMO_SYMBOLS:
            if symbol.symbol in existing:
                print(f"- Symbol {symbol.symbol} already exists, skipping")
                continue
            await database.save_symbol(symbol)
            print(f"✓ Created symbol {symbol.symbol} ({symbol.admin_controlled_outcome.value})")

        await SettingsReader(database).save_outcome_settings(OutcomeSettings())
        print("✓ Saved default outcome-control settings")
    finally:
        await database.close()

    print()
    print("Done.")


def main():
    parser = argparse.ArgumentParser(description="Seed demo data for the position engine")
    parser.add_argument("--email", default="demo@example.com", help="Demo user email")
    parser.add_argument("--balance", default="10000", help="Initial trading balance")
    parser.add_argument("--database-url", help="Override DATABASE_URL")
    args = parser.parse_args()

    asyncio.run(seed(args.email, Decimal(args.balance), args.database_url))


if __name__ == "__main__":
    main()
