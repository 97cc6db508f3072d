"""
Session reminder background job.

Posts a reminder into the channel of every live training session that
starts within the reminder window. Each session is reminded once per
start time, so the job can run as often as needed.

Usage:
    Run via CRON every 10 minutes:
        */10 * * * * cd /path/to/project && python -m jobs.session_reminders

    Or run directly:
        python -m jobs.session_reminders
"""

import asyncio
import logging
import sys
from datetime import datetime, timezone
from typing import Dict, Any, Optional

from motor.motor_asyncio import AsyncIOMotorClient

from common.channels import ChannelProvider
from community.config import Settings, settings
from community.dependencies import create_channel_provider
from community.services.sessions.session_service import SessionService

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


class SessionReminderJob:
    """
    Dispatches upcoming session reminders.

    Actions performed:
    1. Finds sessions starting within the window that have a channel
    2. Marks each as reminded for its current start time
    3. Posts the reminder (failures are counted, not retried)
    """

    def __init__(
        self,
        app_settings: Settings,
        channel_provider: Optional[ChannelProvider] = None,
    ):
        """
        Initialize the session reminder job.

        Args:
            app_settings: Application settings (database, Slack, window)
            channel_provider: Channel provider (Slack from settings if omitted)
        """
        self._settings = app_settings
        self._client = AsyncIOMotorClient(app_settings.MONGODB_URI, tz_aware=True)
        self._db = self._client[app_settings.MONGODB_DATABASE]

        provider = channel_provider or create_channel_provider(app_settings)
        self._session_service = SessionService(self._db, provider)

    async def run(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Execute the reminder sweep.

        Returns:
            Dict with job results including counts and any errors
        """
        logger.info("Starting session reminder job")
        start_time = datetime.now(timezone.utc)

        results: Dict[str, Any] = {
            "startTime": start_time.isoformat(),
            "considered": 0,
            "sent": 0,
            "failed": 0,
            "skipped": 0,
            "errors": [],
        }

        try:
            stats = await self._session_service.dispatch_reminders(
                now=now,
                window_minutes=self._settings.REMINDER_WINDOW_MINUTES,
            )
            results.update(stats)
        except Exception as e:
            error_msg = f"Job failed: {str(e)}"
            logger.error(error_msg)
            results["errors"].append(error_msg)

        end_time = datetime.now(timezone.utc)
        results["endTime"] = end_time.isoformat()
        results["durationSeconds"] = (end_time - start_time).total_seconds()

        logger.info(f"Session reminder job completed: {results['sent']} sent, {results['failed']} failed")

        return results

    async def close(self):
        """Close database connection."""
        self._client.close()


async def main():
    """Main entry point for the session reminder job."""
    job = SessionReminderJob(settings)

    try:
        results = await job.run()

        print("\n=== Session Reminder Job Results ===")
        print(f"Start Time: {results['startTime']}")
        print(f"End Time: {results['endTime']}")
        print(f"Duration: {results['durationSeconds']:.2f} seconds")
        print(f"Sessions Considered: {results['considered']}")
        print(f"Reminders Sent: {results['sent']}")
        print(f"Reminders Failed: {results['failed']}")
        print(f"Already Reminded: {results['skipped']}")

        if results["errors"]:
            print(f"\nErrors ({len(results['errors'])}):")
            for error in results["errors"]:
                print(f"  - {error}")

        exit_code = 1 if results["errors"] or results["failed"] else 0
        sys.exit(exit_code)

    finally:
        await job.close()


if __name__ == "__main__":
    asyncio.run(main())
