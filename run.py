#!/usr/bin/env python3
"""
Customer Ledger Entry Point

Starts the FastAPI server with the customer ledger reconciliation engine.
"""

import sys

from customer_ledger.api import run_server
from customer_ledger.config import get_config
from customer_ledger.logging_config import setup_logging


if __name__ == "__main__":
    config = get_config()
    setup_logging(level=config.log_level, log_format=config.log_format, log_file=config.log_file)

    print("📒 Starting Customer Ledger...")
    print(f"🗄️  Storage backend: {config.storage_type}")
    print(f"🏷️  Loan marker: {config.loan_marker}")
    print("💰 All balances use Decimal precision")
    print(f"🌐 API available at: http://localhost:{config.api_port}")
    print(f"📚 Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(
            host=config.api_host,
            port=config.api_port,
            debug=False  # Set to True for development
        )
    except KeyboardInterrupt:
        print("\n👋 Shutting down Customer Ledger...")
    except Exception as e:
        print(f"❌ Error starting server: {e}")
        sys.exit(1)
