"""
Job runner for scheduled background jobs.
Each run_* returns a dict with "message" and "count".
"""
import logging

from services.report_cache import ReportCache

logger = logging.getLogger(__name__)


async def run_report_cache_sweep(cache: ReportCache):
    try:
        count = cache.sweep()
        logger.info(f"Report cache sweep completed: {count} expired, {len(cache)} remaining")
        return {"message": f"Expired reports removed: {count}", "count": count}
    except Exception as e:
        logger.error(f"Report cache sweep failed: {e}")
        raise
