"""
实时通知中心（Server-Sent Events）

每个连接一个 asyncio.Queue，发布时按规则路由：
- admin_only: 只发给管理员连接
- user_id: 只发给该用户的连接
- 其他: 广播给所有连接

连接只保存在当前进程内，多实例部署时不会互相转发
"""

import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Dict, Optional

logger = logging.getLogger(__name__)

NOTIFICATION_TYPES = [
    "order_update", "stock_alert", "payment_update", "admin_alert", "system_message"
]

HEARTBEAT_INTERVAL = 30.0  # 秒
STALE_TIMEOUT = 65.0
_CLOSE = object()


@dataclass
class Connection:
    id: str
    user_id: Optional[int]
    is_admin: bool
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)
    connected_at: float = field(default_factory=time.time)
    last_heartbeat: float = field(default_factory=time.time)


def format_event(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False, default=str)}\n\n"


class NotificationHub:
    def __init__(self, heartbeat_interval: float = HEARTBEAT_INTERVAL, stale_timeout: float = STALE_TIMEOUT):
        self.heartbeat_interval = heartbeat_interval
        self.stale_timeout = stale_timeout
        self.connections: Dict[str, Connection] = {}

    def connect(self, user_id: Optional[int], is_admin: bool = False) -> Connection:
        conn = Connection(id=uuid.uuid4().hex, user_id=user_id, is_admin=is_admin)
        self.connections[conn.id] = conn
        conn.queue.put_nowait(self._build_message(
            "system_message", "Ligado", "Notificações em tempo real ativas",
            data={"connection_id": conn.id},
        ))
        logger.info(f"📡 SSE 连接建立: {conn.id} (用户 {user_id}, 管理员={is_admin})，当前 {len(self.connections)} 个")
        return conn

    def disconnect(self, connection_id: str) -> None:
        conn = self.connections.pop(connection_id, None)
        if conn is not None:
            conn.queue.put_nowait(_CLOSE)
            logger.info(f"📴 SSE 连接断开: {connection_id}，剩余 {len(self.connections)} 个")

    def _build_message(
        self,
        type: str,
        title: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
        user_id: Optional[int] = None,
        admin_only: bool = False) -> Dict[str, Any]:
        return {
            "id": uuid.uuid4().hex,
            "type": type,
            "title": title,
            "message": message,
            "data": data or {},
            "user_id": user_id,
            "admin_only": admin_only,
            "timestamp": datetime.utcnow().isoformat(),
        }

    def _should_deliver(self, conn: Connection, user_id: Optional[int], admin_only: bool) -> bool:
        if admin_only:
            return conn.is_admin
        if user_id is not None:
            return conn.user_id == user_id
        return True

    def publish(
        self,
        type: str,
        title: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
        user_id: Optional[int] = None,
        admin_only: bool = False) -> int:
        """发布通知，返回送达的连接数"""
        payload = self._build_message(type, title, message, data, user_id, admin_only)
        delivered = 0
        for conn in list(self.connections.values()):
            if self._should_deliver(conn, user_id, admin_only):
                conn.queue.put_nowait(payload)
                delivered += 1
        logger.debug(f"📨 通知 {type} 已推送到 {delivered} 个连接")
        return delivered

    async def stream(self, conn: Connection) -> AsyncIterator[str]:
        """SSE 输出流：有消息时推送，空闲时发送心跳"""
        try:
            while True:
                try:
                    item = await asyncio.wait_for(conn.queue.get(), timeout=self.heartbeat_interval)
                except asyncio.TimeoutError:
                    conn.last_heartbeat = time.time()
                    yield ": heartbeat\n\n"
                    continue
                if item is _CLOSE:
                    break
                conn.last_heartbeat = time.time()
                yield format_event(item)
        finally:
            self.connections.pop(conn.id, None)

    def cleanup_stale(self, now: Optional[float] = None) -> int:
        """清理超时未心跳的连接"""
        now = now or time.time()
        stale = [
            conn_id for conn_id, conn in self.connections.items()
            if now - conn.last_heartbeat > self.stale_timeout
        ]
        for conn_id in stale:
            self.disconnect(conn_id)
        if stale:
            logger.info(f"🧹 清理 {len(stale)} 个失效 SSE 连接")
        return len(stale)

    def get_stats(self) -> Dict[str, Any]:
        admin = sum(1 for c in self.connections.values() if c.is_admin)
        return {
            "total_connections": len(self.connections),
            "admin_connections": admin,
            "user_connections": len(self.connections) - admin,
            "connections": [
                {
                    "id": c.id,
                    "user_id": c.user_id,
                    "is_admin": c.is_admin,
                    "connected_at": datetime.utcfromtimestamp(c.connected_at).isoformat(),
                    "last_heartbeat": datetime.utcfromtimestamp(c.last_heartbeat).isoformat(),
                }
                for c in self.connections.values()
            ],
        }


# 全局通知中心
notification_hub = NotificationHub()


def cleanup_stale_connections() -> int:
    return notification_hub.cleanup_stale()
