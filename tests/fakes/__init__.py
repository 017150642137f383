"""In-memory stand-ins for MinIO and Redis."""
from .fake_redis import FakeRedis
from .fake_storage import FakeObjectStorage, FakeStream

__all__ = ["FakeObjectStorage", "FakeStream", "FakeRedis"]
