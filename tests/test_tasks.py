import asyncio
import logging

from notary.services.tasks import BackgroundDispatcher


def test_failed_task_is_logged_once(caplog) -> None:
    async def scenario() -> BackgroundDispatcher:
        dispatcher = BackgroundDispatcher()

        async def boom() -> None:
            raise RuntimeError("ledger went away")

        dispatcher.spawn(boom(), description="sync job posting posting-1")
        await dispatcher.drain(timeout=1)
        return dispatcher

    with caplog.at_level(logging.ERROR, logger="notary.services.tasks"):
        dispatcher = asyncio.run(scenario())

    failures = [record for record in caplog.records if record.getMessage().startswith("background task failed")]
    assert len(failures) == 1
    assert "sync job posting posting-1" in failures[0].getMessage()
    assert len(dispatcher) == 0


def test_drain_waits_for_running_tasks() -> None:
    finished: list[str] = []

    async def scenario() -> None:
        dispatcher = BackgroundDispatcher()

        async def work(name: str) -> None:
            await asyncio.sleep(0.01)
            finished.append(name)

        dispatcher.spawn(work("a"), description="a")
        dispatcher.spawn(work("b"), description="b")
        assert len(dispatcher) == 2
        await dispatcher.drain(timeout=1)

    asyncio.run(scenario())
    assert sorted(finished) == ["a", "b"]


def test_drain_cancels_tasks_past_timeout(caplog) -> None:
    async def scenario() -> asyncio.Task:
        dispatcher = BackgroundDispatcher()
        task = dispatcher.spawn(asyncio.sleep(10), description="slow provisioning")
        await dispatcher.drain(timeout=0.01)
        return task

    with caplog.at_level(logging.WARNING, logger="notary.services.tasks"):
        task = asyncio.run(scenario())

    assert task.cancelled()
    assert "background task cancelled: slow provisioning" in caplog.text
