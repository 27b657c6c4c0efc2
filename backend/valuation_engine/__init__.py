# backend/valuation_engine/__init__.py
"""
Time-series analytics and valuation engine.

Stores daily price bars per (symbol, region), keeps moving average, MACD
and RSI series current, and values regional portfolios against their
benchmark.
"""
