"""
Background Daemon Runner
Runs the session timer, reminders and cleanup as a separate process: python run_worker.py
"""

import asyncio
import logging
import sys

from medconsult.collaborators import build_collaborators
from medconsult.workers.periodic import build_supervisor

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)


async def run_daemons():
    supervisor = build_supervisor(build_collaborators())
    supervisor.start()
    try:
        await asyncio.Event().wait()
    finally:
        await supervisor.stop()


if __name__ == "__main__":
    logger.info("🚀 Starting background daemons...")
    try:
        asyncio.run(run_daemons())
    except KeyboardInterrupt:
        logger.info("👋 Background daemons stopped by user")
    except Exception as e:
        logger.error(f"❌ Background daemons crashed: {e}")
        sys.exit(1)
