from __future__ import annotations

from collections import defaultdict

import allure

from conftest import BlockingExecutor, ScriptedExecutor
from picfactory.jobs.models import GenerationTask, JobDoneEvent, JobProgressEvent, TaskStatus

pytestmark = [
    allure.epic("Job Scheduler"),
    allure.feature("Pause, Resume, Cancel"),
]


def _statuses(bundle) -> list[TaskStatus]:
    return [task.status for task in bundle.tasks]


def test_start_twice_runs_a_single_loop(scheduler_factory, make_image, output_dir) -> None:
    executor = BlockingExecutor()
    scheduler = scheduler_factory(executor)
    progress: list[JobProgressEvent] = []
    scheduler.on_progress(progress.append)
    bundle = scheduler.create_job([make_image("a.png")], ["x"], output_dir)

    scheduler.start(bundle.id)
    assert executor.started.wait(timeout=5)
    thread = scheduler.store.get(bundle.id).thread
    scheduler.start(bundle.id)

    assert scheduler.store.get(bundle.id).thread is thread
    executor.release.set()
    assert scheduler.join(bundle.id, timeout=5)
    assert len(executor.calls) == 1
    running = [event for event in progress if event.status == TaskStatus.RUNNING]
    assert [event.current_task_id for event in running] == [bundle.tasks[0].id] * 2


def test_pause_then_resume_moves_exactly_the_paused_set_back_to_queued(
    scheduler_factory,
    make_image,
    output_dir,
) -> None:
    scheduler = scheduler_factory(ScriptedExecutor())
    updates: dict[str, list[TaskStatus]] = defaultdict(list)
    scheduler.on_task_updated(lambda task: updates[task.id].append(task.status))
    bundle = scheduler.create_job([make_image("a.png"), make_image("b.png")], ["x"], output_dir)

    scheduler.pause(bundle.id)
    assert _statuses(bundle) == [TaskStatus.PAUSED, TaskStatus.PAUSED]

    scheduler.resume(bundle.id)
    assert scheduler.join(bundle.id, timeout=5)

    for task in bundle.tasks:
        assert updates[task.id] == [
            TaskStatus.PAUSED,
            TaskStatus.QUEUED,
            TaskStatus.RUNNING,
            TaskStatus.DONE,
        ]


def test_start_on_a_paused_job_requeues_and_runs_every_task(
    scheduler_factory,
    make_image,
    output_dir,
) -> None:
    scheduler = scheduler_factory(ScriptedExecutor())
    updates: dict[str, list[TaskStatus]] = defaultdict(list)
    done: list[JobDoneEvent] = []
    scheduler.on_task_updated(lambda task: updates[task.id].append(task.status))
    scheduler.on_done(done.append)
    bundle = scheduler.create_job([make_image("a.png")], ["x", "y"], output_dir)

    scheduler.pause(bundle.id)
    scheduler.start(bundle.id)
    assert scheduler.join(bundle.id, timeout=5)

    assert _statuses(bundle) == [TaskStatus.DONE, TaskStatus.DONE]
    for task in bundle.tasks:
        assert updates[task.id][:2] == [TaskStatus.PAUSED, TaskStatus.QUEUED]
    assert [event.final_status for event in done] == [TaskStatus.DONE]


def test_pause_lets_running_task_finish_and_holds_the_rest(
    scheduler_factory,
    make_image,
    output_dir,
) -> None:
    executor = BlockingExecutor()
    scheduler = scheduler_factory(executor)
    done: list[JobDoneEvent] = []
    scheduler.on_done(done.append)
    bundle = scheduler.create_job([make_image("a.png")], ["x", "y", "z"], output_dir)

    scheduler.start(bundle.id)
    assert executor.started.wait(timeout=5)
    scheduler.pause(bundle.id)
    assert _statuses(bundle) == [TaskStatus.RUNNING, TaskStatus.PAUSED, TaskStatus.PAUSED]

    executor.release.set()
    assert not scheduler.join(bundle.id, timeout=0.3)
    assert _statuses(bundle) == [TaskStatus.DONE, TaskStatus.PAUSED, TaskStatus.PAUSED]
    assert done == []

    scheduler.resume(bundle.id)
    assert scheduler.join(bundle.id, timeout=5)
    assert _statuses(bundle) == [TaskStatus.DONE] * 3
    assert [event.final_status for event in done] == [TaskStatus.DONE]


def test_cancel_marks_all_non_terminal_tasks_immediately_and_discards_in_flight_result(
    scheduler_factory,
    make_image,
    output_dir,
) -> None:
    executor = BlockingExecutor()
    scheduler = scheduler_factory(executor)
    done: list[JobDoneEvent] = []
    progress: list[JobProgressEvent] = []
    scheduler.on_done(done.append)
    scheduler.on_progress(progress.append)
    bundle = scheduler.create_job([make_image("a.png")], ["x", "y", "z"], output_dir)

    scheduler.start(bundle.id)
    assert executor.started.wait(timeout=5)
    scheduler.cancel(bundle.id)

    assert _statuses(bundle) == [TaskStatus.CANCELLED] * 3
    executor.release.set()
    assert scheduler.join(bundle.id, timeout=5)

    assert _statuses(bundle) == [TaskStatus.CANCELLED] * 3
    assert bundle.tasks[0].output_paths == []
    assert len(executor.calls) == 1
    assert [event.final_status for event in done] == [TaskStatus.CANCELLED]
    assert any(event.status == TaskStatus.CANCELLED for event in progress)


def test_cancel_is_absorbing_across_resume(scheduler_factory, make_image, output_dir) -> None:
    executor = ScriptedExecutor()
    scheduler = scheduler_factory(executor)
    bundle = scheduler.create_job([make_image("a.png")], ["x", "y"], output_dir)

    scheduler.pause(bundle.id)
    scheduler.cancel(bundle.id)
    scheduler.resume(bundle.id)
    assert scheduler.join(bundle.id, timeout=5)

    assert _statuses(bundle) == [TaskStatus.CANCELLED] * 2
    assert executor.calls == []


def test_cancel_before_start_reports_done_without_a_loop(
    scheduler_factory,
    make_image,
    output_dir,
) -> None:
    scheduler = scheduler_factory(ScriptedExecutor())
    done: list[JobDoneEvent] = []
    scheduler.on_done(done.append)
    bundle = scheduler.create_job([make_image("a.png")], ["x"], output_dir)

    scheduler.cancel(bundle.id)

    assert _statuses(bundle) == [TaskStatus.CANCELLED]
    assert [event.final_status for event in done] == [TaskStatus.CANCELLED]
    assert scheduler.store.get(bundle.id).thread is None


def test_delete_output_removes_files_and_notifies(scheduler_factory, make_image, output_dir) -> None:
    scheduler = scheduler_factory(ScriptedExecutor())
    updates: list[GenerationTask] = []
    bundle = scheduler.create_job([make_image("a.png")], ["x"], output_dir)
    scheduler.start(bundle.id)
    assert scheduler.join(bundle.id, timeout=5)
    task = bundle.tasks[0]
    output_path = task.output_paths[0]
    assert output_path.is_file()
    scheduler.on_task_updated(updates.append)

    scheduler.delete_output(task.id)
    scheduler.delete_output(task.id)

    assert not output_path.exists()
    assert task.output_paths == []
    assert task.status == TaskStatus.DONE
    assert [update.output_paths for update in updates] == [[], []]


def test_unsubscribed_observer_stops_receiving_events(
    scheduler_factory,
    make_image,
    output_dir,
) -> None:
    scheduler = scheduler_factory(ScriptedExecutor())
    received: list[JobProgressEvent] = []
    unsubscribe = scheduler.on_progress(received.append)
    scheduler.create_job([make_image("a.png")], ["x"], output_dir)

    unsubscribe()
    scheduler.create_job([make_image("b.png")], ["x"], output_dir)

    assert len(received) == 1


def test_failing_observer_does_not_break_other_observers(
    scheduler_factory,
    make_image,
    output_dir,
) -> None:
    scheduler = scheduler_factory(ScriptedExecutor())
    received: list[JobDoneEvent] = []

    def _explode(_event: JobDoneEvent) -> None:
        raise RuntimeError("observer bug")

    scheduler.on_done(_explode)
    scheduler.on_done(received.append)
    bundle = scheduler.create_job([make_image("a.png")], ["x"], output_dir)

    scheduler.start(bundle.id)
    assert scheduler.join(bundle.id, timeout=5)

    assert [event.final_status for event in received] == [TaskStatus.DONE]
