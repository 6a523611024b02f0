from typing import Protocol, runtime_checkable


@runtime_checkable
class Runner(Protocol):
    """An execution backend: runs `function` with `payload` somewhere, returns its response."""

    name: str

    async def launch(self, function: str, payload: str) -> str: ...

    async def close(self) -> None: ...
