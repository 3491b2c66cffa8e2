#!/usr/bin/env python3
"""
Engine Runner - start the flash-loan arbitrage engine from a checkout

Usage:
    python run_engine.py --config config/engine.example.yaml run
    python run_engine.py --config config/engine.example.yaml check
"""

from flash_arbitrage.cli import cli

if __name__ == "__main__":
    cli()
