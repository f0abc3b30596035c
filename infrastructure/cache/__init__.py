"""缓存层对外暴露的接口"""
from .event_claims import (
    RedisEventClaimStore,
    init_event_claim_store,
    get_event_claim_store,
    shutdown_event_claim_store,
)

__all__ = [
    "RedisEventClaimStore",
    "init_event_claim_store",
    "get_event_claim_store",
    "shutdown_event_claim_store",
]
