"""Compensating actions for work spanning the blob store and the database."""

import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

Compensation = Callable[[], Awaitable[None]]


class Saga:
    """Ordered list of compensations, undone in reverse when the block fails.

    Usage::

        async with Saga("store file") as saga:
            saga.add(f"delete {key}", lambda: blob_store.delete(key))
            await blob_store.save(data, key)
            await metadata_store.create_file(...)

    If the block raises, every registered compensation runs, newest first.
    Compensation failures are logged and never replace the original error.
    """

    def __init__(self, name: str):
        self.name = name
        self._steps: list[tuple[str, Compensation]] = []

    def add(self, description: str, action: Compensation) -> None:
        self._steps.append((description, action))

    @property
    def pending(self) -> list[str]:
        return [description for description, _ in self._steps]

    async def compensate(self) -> list[str]:
        """Run compensations in reverse order.

        Returns:
            Descriptions of compensations that failed
        """
        failed: list[str] = []
        while self._steps:
            description, action = self._steps.pop()
            try:
                await action()
                logger.info(
                    "Compensation applied",
                    extra={"saga": self.name, "compensation": description},
                )
            except Exception as e:
                failed.append(description)
                logger.error(
                    "Compensation failed",
                    extra={"saga": self.name, "compensation": description, "error": str(e)},
                    exc_info=True,
                )
        return failed

    async def __aenter__(self) -> "Saga":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None:
            logger.warning(
                "Saga step failed, compensating",
                extra={"saga": self.name, "error": str(exc), "pending": self.pending},
            )
            await self.compensate()
        else:
            self._steps.clear()
        return False
