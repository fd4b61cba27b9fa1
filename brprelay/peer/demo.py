"""Small built-in handlers so a fresh peer answers something useful."""

from __future__ import annotations

import asyncio
import time
from typing import Any, AsyncIterator

from brprelay.peer.client import Handler, MethodError
from brprelay.utils.exceptions import RpcErrorCode


async def ping(params: Any) -> dict[str, Any]:
    return {"pong": True, "ts": int(time.time() * 1000)}


async def ticks(params: Any) -> AsyncIterator[dict[str, Any]]:
    """Stream ``count`` ticks, one every ``interval`` seconds."""
    params = params or {}
    if not isinstance(params, dict):
        raise MethodError(RpcErrorCode.INVALID_PARAMS, "params must be an object")
    count = int(params.get("count", 3))
    interval = float(params.get("interval", 0.5))
    for n in range(count):
        if n:
            await asyncio.sleep(interval)
        yield {"tick": n}


def demo_handlers() -> dict[str, Handler]:
    return {"rpc.ping": ping, "rpc.ticks+watch": ticks}
