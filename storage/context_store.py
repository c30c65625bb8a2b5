from typing import Dict, Any, Optional, List
import json
import logging
from datetime import datetime, timedelta

import redis

from core.models import ExecutionCursor

logger = logging.getLogger(__name__)


class ContextStore:
    """Snapshots of execution cursors, live and archived"""

    def __init__(self, use_redis: bool = False, redis_host: str = 'localhost',
                 redis_port: int = 6379, redis_db: int = 0,
                 session_ttl: int = 3600, archive_limit: int = 1000):
        self.use_redis = use_redis
        self.session_ttl = session_ttl
        self.archive_limit = archive_limit
        self.redis_client = None

        if use_redis:
            try:
                self.redis_client = redis.Redis(
                    host=redis_host,
                    port=redis_port,
                    db=redis_db,
                    decode_responses=True
                )
                self.redis_client.ping()
                logger.info("Connected to Redis for cursor storage")
            except redis.RedisError as e:
                logger.warning(f"Redis connection failed: {e}, falling back to in-memory storage")
                self.use_redis = False
                self.redis_client = None

        # In-memory storage
        if not self.use_redis:
            self.memory_store: Dict[str, Dict[str, Any]] = {}
            self.archive_store: List[Dict[str, Any]] = []
            logger.info("Using in-memory storage for cursors")

    def save_state(self, cursor: ExecutionCursor) -> bool:
        """Save a cursor snapshot"""
        session_id = cursor.conversation_id
        try:
            state_data = cursor.to_dict()

            if self.use_redis and self.redis_client:
                self.redis_client.setex(
                    f"session:{session_id}",
                    self.session_ttl,
                    json.dumps(state_data, ensure_ascii=False)
                )
            else:
                self.memory_store[session_id] = {
                    'data': state_data,
                    'expires_at': datetime.now() + timedelta(seconds=self.session_ttl)
                }

            logger.debug(f"Saved cursor for session: {session_id}")
            return True

        except (redis.RedisError, TypeError, ValueError) as e:
            logger.error(f"Failed to save cursor for session {session_id}: {e}")
            return False

    def load_state(self, session_id: str) -> Optional[ExecutionCursor]:
        """Load a cursor snapshot (timers are not part of it)"""
        try:
            if self.use_redis and self.redis_client:
                data = self.redis_client.get(f"session:{session_id}")
                if data:
                    return ExecutionCursor.model_validate(json.loads(data))
            else:
                session_data = self.memory_store.get(session_id)
                if session_data:
                    if datetime.now() < session_data['expires_at']:
                        return ExecutionCursor.model_validate(session_data['data'])
                    del self.memory_store[session_id]
                    logger.debug(f"Session {session_id} expired and removed")

            return None

        except (redis.RedisError, ValueError) as e:
            logger.error(f"Failed to load cursor for session {session_id}: {e}")
            return None

    def delete_state(self, session_id: str) -> bool:
        try:
            if self.use_redis and self.redis_client:
                self.redis_client.delete(f"session:{session_id}")
            else:
                self.memory_store.pop(session_id, None)

            logger.debug(f"Deleted cursor for session: {session_id}")
            return True

        except redis.RedisError as e:
            logger.error(f"Failed to delete cursor for session {session_id}: {e}")
            return False

    def archive_state(self, cursor: ExecutionCursor) -> bool:
        """Keep a finished or reset cursor for later review, newest first"""
        try:
            state_data = cursor.to_dict()
            if self.use_redis and self.redis_client:
                key = f"archive:{cursor.conversation_id}"
                self.redis_client.lpush(key, json.dumps(state_data, ensure_ascii=False))
                self.redis_client.ltrim(key, 0, self.archive_limit - 1)
            else:
                self.archive_store.insert(0, state_data)
                del self.archive_store[self.archive_limit:]
            return True
        except (redis.RedisError, TypeError, ValueError) as e:
            logger.error(f"Failed to archive cursor for session {cursor.conversation_id}: {e}")
            return False

    def list_archived(self, session_id: str) -> List[ExecutionCursor]:
        try:
            if self.use_redis and self.redis_client:
                raw = self.redis_client.lrange(f"archive:{session_id}", 0, -1)
                return [ExecutionCursor.model_validate(json.loads(r)) for r in raw]
            return [
                ExecutionCursor.model_validate(d) for d in self.archive_store
                if d.get('conversation_id') == session_id
            ]
        except (redis.RedisError, ValueError) as e:
            logger.error(f"Failed to list archive for session {session_id}: {e}")
            return []

    def list_sessions(self) -> List[str]:
        """List all sessions with a live snapshot"""
        try:
            if self.use_redis and self.redis_client:
                keys = self.redis_client.keys("session:*")
                return [key.replace("session:", "") for key in keys]

            self.cleanup_expired()
            return list(self.memory_store.keys())

        except redis.RedisError as e:
            logger.error(f"Failed to list sessions: {e}")
            return []

    def cleanup_expired(self) -> int:
        """Drop expired in-memory snapshots (Redis expires keys itself)"""
        if self.use_redis:
            return 0

        current_time = datetime.now()
        expired_sessions = [
            session_id for session_id, session_data in self.memory_store.items()
            if current_time >= session_data['expires_at']
        ]
        for session_id in expired_sessions:
            del self.memory_store[session_id]

        if expired_sessions:
            logger.info(f"Cleaned up {len(expired_sessions)} expired sessions")
        return len(expired_sessions)
