"""
用户领域实体
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional


@dataclass
class User:
    """用户实体 - user_id 由外部认证方提供，不透明且稳定"""

    user_id: str
    username: str
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.user_id:
            raise ValueError("user_id is required")
        if not self.username:
            self.username = self.user_id
        if self.created_at is not None and self.created_at.tzinfo is None:
            self.created_at = self.created_at.replace(tzinfo=timezone.utc)
