"""
Portfolio Analytics Engine

Quantitative core for the multi-chain portfolio tracker:
- FIFO cost-basis ledger (realized / unrealized P&L)
- Performance metrics per timeframe (return, volatility, drawdown, Sharpe, win rate)
- Risk analytics (pairwise correlation, volatility profile, protocol exposure,
  diversification score)
"""

__version__ = "0.1.0"
