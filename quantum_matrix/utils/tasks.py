import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Dict, Mapping, Optional, Union

log = logging.getLogger(__name__)


@dataclass
class Settled:
    name: str
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def gather_settled(
    tasks: Mapping[str, Awaitable[Any]],
    timeout: Union[float, Mapping[str, float]] = 10.0,
) -> Dict[str, Settled]:
    """
    Run awaitables concurrently, each under its own timeout, and collect a
    value or an error per task. One failure never cancels the others.
    """
    names = list(tasks)

    def limit(name: str) -> float:
        return timeout.get(name, 10.0) if isinstance(timeout, Mapping) else timeout

    results = await asyncio.gather(
        *(asyncio.wait_for(tasks[n], timeout=limit(n)) for n in names),
        return_exceptions=True,
    )

    out: Dict[str, Settled] = {}
    for name, result in zip(names, results):
        if isinstance(result, BaseException):
            if isinstance(result, asyncio.CancelledError):
                raise result
            out[name] = Settled(name=name, error=result)
        else:
            out[name] = Settled(name=name, value=result)
    return out
