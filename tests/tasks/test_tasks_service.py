from __future__ import annotations

import asyncio

import pytest
from pydantic import BaseModel

from switchyard.agents import AgentManifest, ManifestRegistry, SubAgentRef
from switchyard.agents.errors import ManifestNotFoundError
from switchyard.core import Runner
from switchyard.errors import BadRequestError, InternalServerError, NotFoundError
from switchyard.llms.types import LLMResponse, ToolCall
from switchyard.storage import InMemoryKeyValueStore, InMemoryRecordStore
from switchyard.tasks import (
    RESUME_AGENT_TASK_NAME,
    InMemoryQueueClient,
    QueueRegistry,
    TaskOptions,
    TaskRecord,
    TaskScheduler,
    TasksRepo,
    TasksService,
    TaskWorker,
    create_resume_agent_task,
    decode_task_record,
    define_task,
)
from switchyard.tools import tool


def run_async(coro):
    return asyncio.run(coro)


class ReportPayload(BaseModel):
    report_id: str


class PathArgs(BaseModel):
    path: str


async def make_service(factory=InMemoryQueueClient):
    store = InMemoryRecordStore()
    await store.setup()
    repo = TasksRepo(store)
    queues = QueueRegistry(factory)
    scheduler = TaskScheduler(repo=repo, queues=queues)
    return repo, queues, scheduler, TasksService(repo=repo, scheduler=scheduler)


def report_task(handler=None, **options):
    async def _noop(payload, record):
        return None

    return define_task(
        "reports:build",
        payload_model=ReportPayload,
        handler=handler or _noop,
        options=TaskOptions(**options) if options else None,
    )


def test_get_missing_task_raises_not_found():
    async def scenario():
        _, _, _, service = await make_service()
        with pytest.raises(NotFoundError):
            await service.get("task_missing")

    run_async(scenario())


def test_list_tasks_filters_by_fields():
    task = report_task()

    async def scenario():
        _, _, scheduler, service = await make_service()
        a = await scheduler.schedule(task, {"report_id": "r1"}, user_id="alice")
        b = await scheduler.schedule(task, {"report_id": "r2"}, user_id="bob")
        c = await scheduler.schedule(task, {"report_id": "r3"}, user_id="alice", delay_ms=10_000)
        return (
            a,
            b,
            c,
            await service.get_by_user_id("alice"),
            await service.get_by_status("delayed"),
            await service.get_by_task_name("reports:build"),
            await service.list_tasks(user_id="alice", status="pending"),
            await service.list_tasks(limit=1, offset=1),
        )

    a, b, c, alice, delayed, by_name, alice_pending, page = run_async(scenario())
    assert [r.id for r in alice] == [c.id, a.id]
    assert [r.id for r in delayed] == [c.id]
    assert len(by_name) == 3
    assert [r.id for r in alice_pending] == [a.id]
    assert [r.id for r in page] == [b.id]


def test_cancel_removes_the_job_and_blocks_processing():
    task = report_task()

    async def scenario():
        _, queues, scheduler, service = await make_service()
        record = await scheduler.schedule(task, {"report_id": "r1"})
        cancelled = await service.cancel_task(record.id)
        job = await (await queues.get("reports:build")).get_job(record.external_id)
        with pytest.raises(BadRequestError):
            await service.cancel_task(record.id)
        return cancelled, job

    cancelled, job = run_async(scenario())
    assert cancelled.status == "cancelled"
    assert job is None


def test_retry_resets_attempts_and_reenqueues_failed_tasks():
    calls: list[int] = []

    async def flaky(payload, record):
        calls.append(record.attempts)
        if len(calls) == 1:
            raise RuntimeError("disk full")
        return {"built": payload.report_id}

    task = report_task(flaky, max_attempts=1)

    async def scenario():
        repo, queues, scheduler, service = await make_service()
        worker = TaskWorker(repo=repo, queues=queues, tasks=[task])
        record = await scheduler.schedule(task, {"report_id": "r9"})
        await worker.run_once()
        failed = await service.get(record.id)
        with pytest.raises(BadRequestError):
            await service.cancel_task(record.id)
        retried = await service.retry_task(record.id)
        await worker.run_once()
        done = await service.get(record.id)
        with pytest.raises(BadRequestError):
            await service.retry_task(record.id)
        stats = await service.get_queue_stats("reports:build")
        return failed, retried, done, stats

    failed, retried, done, stats = run_async(scenario())
    assert failed.status == "failed"
    assert retried.status == "pending"
    assert retried.attempts == 0
    assert retried.error is None
    assert retried.external_id != failed.external_id
    assert done.status == "complete"
    assert done.result == {"built": "r9"}
    assert calls == [1, 1]
    assert stats.completed == 1 and stats.failed == 1


def test_repo_bulk_update_merges_partials_and_counts_each_matched_entry():
    task = report_task()

    async def scenario():
        repo, _, scheduler, _ = await make_service()
        a = await scheduler.schedule(task, {"report_id": "r1"}, user_id="alice")
        b = await scheduler.schedule(task, {"report_id": "r2"}, user_id="bob")
        matched = await repo.bulk_update(
            [
                (a.id, {"status": "running", "attempts": 1}),
                (a.id, {"attempts": 2}),
                (b.id, {"status": "cancelled"}),
                ("task_missing", {"status": "failed"}),
            ]
        )
        return a, b, matched, await repo.require(a.id), await repo.require(b.id)

    a, b, matched, a_after, b_after = run_async(scenario())
    assert matched == 3
    assert a_after.status == "running"
    assert a_after.attempts == 2
    assert a_after.payload == {"report_id": "r1"}
    assert a_after.user_id == "alice"
    assert a_after.external_id == a.external_id
    assert a_after.updated_at_ms >= a.updated_at_ms
    assert b_after.status == "cancelled"
    assert b_after.payload == {"report_id": "r2"}
    assert b_after.user_id == "bob"


def test_retry_wraps_enqueue_failures():
    task = report_task()

    class FlakyClient(InMemoryQueueClient):
        fail_next = False

        async def enqueue(self, job):
            if FlakyClient.fail_next:
                raise ConnectionError("queue down")
            return await super().enqueue(job)

    async def scenario():
        repo, _, scheduler, service = await make_service(FlakyClient)
        record = await scheduler.schedule(task, {"report_id": "r1"})
        await repo.update(record.id, {"status": "failed"})
        FlakyClient.fail_next = True
        with pytest.raises(InternalServerError) as exc_info:
            await service.retry_task(record.id)
        return exc_info.value

    err = run_async(scenario())
    assert err.metadata["task_id"]
    assert "queue down" in err.message


def test_legacy_task_documents_are_migrated_on_read():
    record = decode_task_record(
        {
            "id": "task_1",
            "taskName": "reports:build",
            "queueName": "reports",
            "maxAttempts": 4,
            "status": "pending",
            "unknown_field": True,
        }
    )
    assert isinstance(record, TaskRecord)
    assert record.task_name == "reports:build"
    assert record.max_attempts == 4
    with pytest.raises(InternalServerError):
        decode_task_record({"schema_version": "v999", "id": "x"})


def test_resume_agent_task_resumes_a_suspended_state_from_the_queue():
    executed: list[str] = []

    @tool(args_model=PathArgs, name="delete_file", requires_approval=True)
    def delete_file(args: PathArgs) -> str:
        executed.append(args.path)
        return "deleted"

    manifest = AgentManifest(id="ops", version="1", tools=[delete_file])
    responses = [
        LLMResponse(
            tool_calls=[ToolCall(id="c1", tool_name="delete_file", arguments={"path": "/a"})],
            finish_reason="tool_calls",
        ),
        LLMResponse(text="cleaned", finish_reason="stop"),
    ]

    async def completion(messages, tools, tool_choice):
        return responses.pop(0)

    registry = ManifestRegistry()
    registry.register(manifest)

    async def scenario():
        runner = Runner(registry=registry, completion=completion, kv=InMemoryKeyValueStore())
        task = create_resume_agent_task(runner, registry)
        repo, queues, scheduler, _ = await make_service()
        suspended = await runner.run_agent(manifest, "clean")
        record = await scheduler.schedule(
            task,
            {
                "state_id": suspended.state_id,
                "resolutions": [
                    {"approval_id": suspended.suspension_stack.approval_ids()[0], "approved": True}
                ],
            },
        )
        outcomes = await TaskWorker(repo=repo, queues=queues, tasks=[task]).run_once()
        return task, outcomes, await repo.require(record.id)

    task, outcomes, record = run_async(scenario())
    assert task.name == RESUME_AGENT_TASK_NAME
    assert task.options.max_attempts == 1
    assert outcomes[0].outcome == "complete"
    assert record.result["kind"] == "complete"
    assert record.result["output"] == "cleaned"
    assert executed == ["/a"]


def test_resume_agent_task_validates_the_manifest_graph():
    registry = ManifestRegistry()
    registry.register(
        AgentManifest(
            id="parent",
            version="1",
            sub_agents=[SubAgentRef(manifest_id="ghost", manifest_version="1", tool_name="ask_ghost")],
        )
    )

    async def completion(messages, tools, tool_choice):
        return LLMResponse(text="unused")

    runner = Runner(registry=registry, completion=completion, kv=InMemoryKeyValueStore())
    with pytest.raises(ManifestNotFoundError):
        create_resume_agent_task(runner, registry)
