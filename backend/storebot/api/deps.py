"""FastAPI dependencies."""
from fastapi import Request

from storebot.runtime import StoreRuntime
from storebot.services.storage import SnapshotStore


def get_runtime(request: Request) -> StoreRuntime:
    return request.app.state.runtime


def get_store(request: Request) -> SnapshotStore:
    return get_runtime(request).store
