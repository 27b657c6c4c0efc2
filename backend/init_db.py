#!/usr/bin/env python3
# backend/init_db.py
"""
Database initialization script.

Creates the price bar, indicator and status tables.

This script can be run from any directory:
    python backend/init_db.py
    cd backend && python init_db.py
"""
import sys
from pathlib import Path

# Add the backend directory to Python path so 'valuation_engine' is importable
backend_dir = Path(__file__).parent
sys.path.insert(0, str(backend_dir))

from valuation_engine.database import init_db
from valuation_engine.utils.logging import setup_logging


if __name__ == "__main__":
    setup_logging()
    init_db()
