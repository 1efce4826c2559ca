"""
Settlement Sweep Worker Runner
Run this as a separate process: python run_settlement_sweep.py
"""

import asyncio
import logging
import sys

from boinvit_settlement.jobs.settlement_sweep import run_settlement_sweep

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)

if __name__ == "__main__":
    logger.info("🚀 Starting Settlement Sweep Worker...")
    try:
        asyncio.run(run_settlement_sweep())
    except KeyboardInterrupt:
        logger.info("👋 Settlement sweep stopped by user")
    except Exception as e:
        logger.error(f"❌ Settlement sweep crashed: {e}")
        sys.exit(1)
