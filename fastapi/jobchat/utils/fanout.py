import asyncio
import logging
from typing import Any, Awaitable, Dict, Mapping

from jobchat.errors import PartialFanoutFailure, TransientIO


logger = logging.getLogger(__name__)


async def fan_out(operation: str, writes: Mapping[str, Awaitable[Any]]) -> Dict[str, Any]:
    """Run one write per replica owner concurrently and report all-or-nothing.

    Returns ``owner -> result`` when every write succeeded. Otherwise raises
    ``TransientIO`` if every write hit an unavailable store, or
    ``PartialFanoutFailure`` listing which owners were and were not written.
    """
    owners = list(writes)
    tasks = [asyncio.ensure_future(w) for w in writes.values()]
    # Dispatched writes complete even if the caller stops waiting.
    results = await asyncio.shield(asyncio.gather(*tasks, return_exceptions=True))

    succeeded: Dict[str, Any] = {}
    failed: Dict[str, BaseException] = {}
    for owner, result in zip(owners, results):
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                raise result
            failed[owner] = result
        else:
            succeeded[owner] = result

    if not failed:
        return succeeded

    logger.warning(
        "Fan-out write failed",
        extra={"operation": operation, "failed": sorted(failed), "succeeded": sorted(succeeded)},
    )
    if not succeeded and all(isinstance(e, TransientIO) for e in failed.values()):
        raise TransientIO(f"{operation}: store unavailable") from next(iter(failed.values()))
    raise PartialFanoutFailure(operation, succeeded, failed)
