"""
Remote Data Gateway.

BaaS 교체 가능하게 설계. 코어는 RemoteGateway 인터페이스만 의존.
"""

from .base import RemoteGateway
from .supabase import SupabaseGateway

__all__ = [
    "RemoteGateway",
    "SupabaseGateway",
]
