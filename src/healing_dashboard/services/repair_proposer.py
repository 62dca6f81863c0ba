"""
Client for the external locator repair proposer, and the healing pipeline that
reports each repair attempt stage by stage.

Deciding how to repair a locator is the proposer's job; this module only asks
for a candidate and publishes detected, analyzing, healing, then fixed or
failed notifications for the attempt.
"""

import asyncio
import logging
import uuid
from typing import Any, Callable, Dict, Optional

import requests

from src.healing_dashboard.config.status_messages import ERROR_TIPS
from src.healing_dashboard.core.config import settings
from src.healing_dashboard.core.models.healing_models import HealingEvent, HealingStatus, now_ms

logger = logging.getLogger(__name__)


class RepairProposerError(Exception):
    """Raised when the proposer is unreachable or returns no usable locator."""
    pass


class RepairProposerClient:
    """Thin HTTP client for ``POST /fix-locator``."""

    def __init__(self, url: Optional[str] = None, timeout: Optional[int] = None):
        self.url = url or settings.REPAIR_PROPOSER_URL
        self.timeout = timeout or settings.REPAIR_PROPOSER_TIMEOUT

    def propose(self, locator_key: str, failed_locator: str, page_html: str) -> Dict[str, Any]:
        """Ask the proposer for a replacement locator.

        Returns:
            The proposer's answer, at least ``{"newLocator": ..., "reason": ...}``

        Raises:
            RepairProposerError: On transport errors or an answer without a locator
        """
        try:
            response = requests.post(
                self.url,
                json={"locatorKey": locator_key, "failedLocator": failed_locator, "pageHtml": page_html},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise RepairProposerError(f"Repair proposer request failed: {e}") from e
        except ValueError as e:
            raise RepairProposerError(f"Repair proposer returned invalid JSON: {e}") from e

        if not isinstance(data, dict) or not data.get("newLocator"):
            raise RepairProposerError("Repair proposer returned no locator")
        return data

    async def propose_async(self, locator_key: str, failed_locator: str, page_html: str) -> Dict[str, Any]:
        return await asyncio.to_thread(self.propose, locator_key, failed_locator, page_html)


class HealingPipeline:
    """Runs one repair attempt and reports its stages to ``sink``."""

    def __init__(self, sink: Callable[[HealingEvent], Any], client: Optional[RepairProposerClient] = None,
                 stage_delay: float = 0.0):
        self._sink = sink
        self.client = client or RepairProposerClient()
        self.stage_delay = stage_delay

    async def heal(self, locator_key: str, failed_locator: str, page_html: str) -> Dict[str, Any]:
        """Heal one locator.

        Raises:
            RepairProposerError: After the failed notification has been published
            Exception: Anything else, after an error notification has been published
        """
        session_id = f"{locator_key}-{now_ms()}-{uuid.uuid4().hex[:6]}"
        logger.info(f"🩹 HEALING PIPELINE: Healing locator {failed_locator} ({session_id})")

        for step, status in enumerate((HealingStatus.DETECTED, HealingStatus.ANALYZING, HealingStatus.HEALING)):
            if step and self.stage_delay:
                await asyncio.sleep(self.stage_delay)
            self._publish(session_id, locator_key, failed_locator, status, current_step=step)

        try:
            result = await self.client.propose_async(locator_key, failed_locator, page_html)
        except RepairProposerError as e:
            logger.error(f"❌ HEALING PIPELINE: {e}")
            for tip in ERROR_TIPS['proposer']:
                logger.info(f"💡 Tip: {tip}")
            self._publish(session_id, locator_key, failed_locator, HealingStatus.FAILED,
                          current_step=HealingStatus.FAILED.stage, error=str(e))
            raise
        except Exception as e:
            logger.error(f"❌ HEALING PIPELINE: Unexpected error while healing {failed_locator}: {e}")
            self._publish(session_id, locator_key, failed_locator, HealingStatus.ERROR,
                          current_step=HealingStatus.ERROR.stage, error=str(e))
            raise

        logger.info(f"🎉 HEALING PIPELINE: {failed_locator} -> {result['newLocator']}")
        self._publish(session_id, locator_key, failed_locator, HealingStatus.FIXED,
                      current_step=HealingStatus.FIXED.stage,
                      new_locator=result["newLocator"], reason=result.get("reason"))
        return {**result, "healingSessionId": session_id}

    def _publish(self, session_id: str, locator_key: str, failed_locator: str, status: HealingStatus, **fields):
        self._sink(HealingEvent(
            locator_key=locator_key,
            old_locator=failed_locator,
            status=status,
            healing_session_id=session_id,
            time=now_ms(),
            **fields
        ))
