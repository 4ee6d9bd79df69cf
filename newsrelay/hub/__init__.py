from .hub import RealtimeHub
from .registry import SessionRegistry
from .relay import RedisStreamEmitter, StreamRelay

__all__ = ["RealtimeHub", "SessionRegistry", "RedisStreamEmitter", "StreamRelay"]
