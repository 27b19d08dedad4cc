"""Position lifecycle for the simulated trading dashboard.

This module provides:
- Settings reader for outcome control and trade minimums
- Position valuation with administrator-forced outcomes
- Periodic revaluation of open positions
- Atomic settlement of closed positions into wallet and ledger
- Manual trading and copy-trade replication
- Loss reports
"""

from src.positions.settings import SettingsReader
from src.positions.valuation import (
    RandomSource,
    default_random_source,
    leverage_multiplier,
    valuate,
)
from src.positions.revaluation import RevaluationLoop
from src.positions.settlement import SettlementService, settlement_entry, settlement_returns
from src.positions.trading import TradingService, open_with_debit
from src.positions.copy_trade import CopyTradeService, pick_symbol
from src.positions.reports import loss_summary

__all__ = [
    'SettingsReader',
    'RandomSource',
    'default_random_source',
    'leverage_multiplier',
    'valuate',
    'RevaluationLoop',
    'SettlementService',
    'settlement_entry',
    'settlement_returns',
    'TradingService',
    'open_with_debit',
    'CopyTradeService',
    'pick_symbol',
    'loss_summary',
]
