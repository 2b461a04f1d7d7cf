#!/usr/bin/env python3
"""
Simple launcher script for the arbitrage engine.
"""
import argparse
import sys
from mevarb.config import ConfigError
from mevarb.main import main, setup_logging
import asyncio

if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Solana cross-venue arbitrage and MEV bundle engine')
    parser.add_argument(
        'mode',
        nargs='?',
        default=None,
        choices=['scan', 'simulate', 'live'],
        help='Operation mode: scan, simulate, or live (default: MODE from .env, else scan)'
    )

    args = parser.parse_args()
    setup_logging()

    try:
        asyncio.run(main(mode=args.mode))
    except KeyboardInterrupt:
        print("\nEngine stopped by user")
        sys.exit(0)
    except ConfigError as e:
        print(f"Configuration error: {e}")
        sys.exit(1)
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)
