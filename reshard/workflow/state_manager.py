"""
Reshard State Manager

Redis-backed state shared between phases and the plan controller.

Redis Key Schema:
    reshard:plans:{plan_id}:props                 → Hash: output property → JSON value
    reshard:plans:{plan_id}:paused                → Pause flag
    reshard:plans:{plan_id}:phases:{phase_id}     → PhaseResult (last outcome)
"""

import json
import logging
import redis.asyncio as redis
from typing import Any, Dict, Optional

from reshard.workflow.models import PhaseResult

logger = logging.getLogger(__name__)

# TTL Settings
STATE_TTL_SECONDS = 604800      # 7 days

# Key prefixes
PREFIX = "reshard"


class RedisStateManager:
    """Manages per-plan reshard state in Redis."""

    def __init__(self, redis_client: redis.Redis, ttl_seconds: int = STATE_TTL_SECONDS):
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds

    # =========================================================================
    # Output Properties
    # =========================================================================

    async def put_property(self, plan_id: str, key: str, value: Any) -> bool:
        """Persist an output property for subsequent phases."""
        hkey = f"{PREFIX}:plans:{plan_id}:props"
        pipe = self.redis.pipeline()
        pipe.hset(hkey, key, json.dumps(value))
        pipe.expire(hkey, self.ttl_seconds)
        await pipe.execute()
        logger.debug(f"Plan {plan_id}: property {key} = {value!r}")
        return True

    async def get_properties(self, plan_id: str) -> Dict[str, Any]:
        data = await self.redis.hgetall(f"{PREFIX}:plans:{plan_id}:props")
        props = {}
        for key, raw in data.items():
            key_str = key if isinstance(key, str) else key.decode()
            try:
                props[key_str] = json.loads(raw)
            except (TypeError, ValueError) as e:
                logger.warning(f"Failed to deserialize property {key_str}: {e}")
        return props

    async def get_property(self, plan_id: str, key: str) -> Optional[Any]:
        raw = await self.redis.hget(f"{PREFIX}:plans:{plan_id}:props", key)
        if raw is None:
            return None
        return json.loads(raw)

    # =========================================================================
    # Pause
    # =========================================================================

    async def set_paused(self, plan_id: str) -> bool:
        """Ask running phases of a plan to suspend at their next step boundary."""
        key = f"{PREFIX}:plans:{plan_id}:paused"
        await self.redis.setex(key, self.ttl_seconds, "1")
        return True

    async def clear_paused(self, plan_id: str) -> bool:
        key = f"{PREFIX}:plans:{plan_id}:paused"
        return (await self.redis.delete(key)) > 0

    async def is_paused(self, plan_id: str) -> bool:
        key = f"{PREFIX}:plans:{plan_id}:paused"
        result = await self.redis.get(key)
        return result is not None and (result == "1" or result == b"1")

    # =========================================================================
    # Phase Results
    # =========================================================================

    async def record_result(self, plan_id: str, result: PhaseResult) -> bool:
        key = f"{PREFIX}:plans:{plan_id}:phases:{result.phase_id}"
        await self.redis.setex(key, self.ttl_seconds, result.model_dump_json())
        return True

    async def get_result(self, plan_id: str, phase_id: str) -> Optional[PhaseResult]:
        data = await self.redis.get(f"{PREFIX}:plans:{plan_id}:phases:{phase_id}")
        if not data:
            return None
        return PhaseResult(**json.loads(data))
