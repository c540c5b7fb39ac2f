"""
Phase Event Publishing

Publishes phase events to Redis pub/sub for real-time monitoring
"""

import json
import logging
from typing import Dict, Any
from datetime import datetime

from reshard.workflow.models import PhaseResult

logger = logging.getLogger(__name__)

PREFIX = "reshard"


class WorkflowEventPublisher:
    """Publishes phase events to Redis pub/sub (async)"""

    def __init__(self, redis_client):
        """
        Initialize event publisher

        Args:
            redis_client: Async Redis client instance
        """
        self.redis = redis_client

    async def _publish_event(self, plan_id: str, event_type: str, data: Dict[str, Any]):
        """
        Publish event to Redis pub/sub

        Args:
            plan_id: Plan UUID
            event_type: Event type (e.g., 'status_update', 'phase_hold')
            data: Event data
        """
        channel = f"{PREFIX}:events:{plan_id}"

        event = {
            "type": event_type,
            "timestamp": datetime.utcnow().isoformat(),
            "data": data
        }

        try:
            await self.redis.publish(channel, json.dumps(event, default=str))
            logger.debug(f"Published event {event_type} to channel {channel}")
        except Exception as e:
            logger.error(f"Failed to publish event {event_type}: {str(e)}")

    async def status_update(self, plan_id: str, phase_id: str, snapshot: Dict[str, Any]):
        """Publish the current status tree of a running phase"""
        await self._publish_event(plan_id, "status_update", {
            "phase_id": phase_id,
            "status": snapshot
        })

    async def phase_result(self, plan_id: str, result: PhaseResult):
        """Publish a phase outcome (finished, retry or hold)"""
        await self._publish_event(plan_id, f"phase_{result.outcome.value}", {
            "phase_id": result.phase_id,
            "error": result.error,
            "info": result.info
        })
