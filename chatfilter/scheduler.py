import asyncio
import logging

from collections.abc import Hashable
from datetime import timedelta
from typing import Callable, Union, Dict, Awaitable, Any, List, Sequence, Mapping, Optional

logger = logging.getLogger(__name__)


TaskFunction = Union[
    Callable[[], Awaitable[None]],
    Callable[[Any], Awaitable[None]]]  #: async def name() -> None

ErrorHook = Callable[['Task', float, Exception], Awaitable[None]]


class Task(Hashable):
    """
    A coroutine that can be scheduled. This should not be instantiated directly, but using the
    :func:`~.task` decorator.

    :param callback: A callback coroutine.
    :param is_unique: If True, this task can only be scheduled once at a time (includes recurring).
        If False, this task can be scheduled to run multiple times in the future.
    """
    def __init__(self, callback: TaskFunction, is_unique=True):
        if not asyncio.iscoroutinefunction(callback):
            raise TypeError("Task callback must be a coroutine function.")

        self.callback = callback
        self.is_unique = is_unique
        self.instance = None  # instance the last time this Task was accessed as a descriptor
        self.on_error = None  # type: Callable[[Exception], Awaitable[None]]

    def __get__(self, instance, owner):
        if instance:
            self.instance = instance
        return self

    def run(self, instance=None, *args, **kwargs):
        # returns the un-awaited coroutine object
        return self.callback(instance, *args, **kwargs) if instance else \
               self.callback(*args, **kwargs)

    def error(self, coro: Callable[[Exception], Awaitable[None]]):
        """
        Decorator. Sets a coroutine as a local error handler for this task. This handler will be
        called for any exception raised by the task.

        :param coro: Coroutine to handle errors, signature func(exception) -> None.
        :raise TypeError: Argument is not a coroutine function
        """
        if not asyncio.iscoroutinefunction(coro):
            raise TypeError("Error handler must be a coroutine function.")

        self.on_error = coro
        return coro

    def __str__(self):
        return repr(self)

    def __repr__(self):
        return self.callback.__qualname__

    def __hash__(self):
        return hash((self.callback, self.is_unique))

    def __eq__(self, other):
        if not isinstance(other, Task):
            return NotImplemented
        return self.callback == other.callback and self.is_unique == other.is_unique


# noinspection PyShadowingNames
class TaskInstance:
    """
    One scheduling of a :class:`Task`, as returned by :meth:`Scheduler.schedule_task_in`. Covers every run of a recurring schedule.
    """
    def __init__(self,
                 scheduler: 'Scheduler', task: Task, timestamp: float,
                 instance: Any, args: Sequence[Any], kwargs: Mapping[str, Any]):
        self.scheduler = scheduler
        self.task = task
        self.instance = instance
        self.timestamp = timestamp
        self.async_task = None  # type: asyncio.Task
        self.args = tuple(args) if args else ()
        self.kwargs = dict(kwargs.items()) if kwargs else {}

    def cancel(self):
        self.scheduler.cancel_task(self)

    def is_current(self):
        """ Return True if called from within this task. """
        try:
            return self.async_task is asyncio.current_task()
        except RuntimeError:  # no running loop
            return False

    def is_done(self):
        return self.async_task is None or self.async_task.done()

    async def run(self):
        task_id = '{!s}@{:.2f}'.format(self.task, self.timestamp)
        # noinspection PyBroadException
        try:
            if self.instance:
                return await self.task.run(self.instance, *self.args, **self.kwargs)
            else:
                return await self.task.run(*self.args, **self.kwargs)
        except (asyncio.CancelledError, KeyboardInterrupt, SystemExit):
            raise
        except Exception as e:
            logger.exception("Error in Task {!s}.".format(task_id))
            try:
                await self.on_error(e)
            except Exception:
                logger.exception("Error in Task {!s} while handling error.".format(task_id))
            await self.scheduler.dispatch_error(self.task, self.timestamp, e)

    async def on_error(self, e: Exception):
        if self.task.on_error:
            if self.instance:
                await self.task.on_error(self.instance, e)
            else:
                await self.task.on_error(e)
        else:
            logger.debug("Task {!s} has no error handler".format(self.task))

    def __str__(self):
        return str(self.task) + "@{:.2f}".format(self.timestamp)


def task(is_unique=True):
    """
    Decorator for a coroutine function or method that can be scheduled.

    :param is_unique: If True, this task can only be scheduled once at a time (includes
        recurring). If False, this task can be scheduled to run multiple times in the future.
    """
    def decorator(func):
        if isinstance(func, Task):
            raise TypeError("Callback is already a schedulable task.")
        return Task(callback=func, is_unique=is_unique)
    return decorator


def _to_seconds(value: Union[float, timedelta]) -> float:
    try:
        return value.total_seconds()
    except AttributeError:
        return float(value)


# noinspection PyShadowingNames
class Scheduler:
    """
    Allows scheduling coroutines for execution at a future point in time, either once or on a
    recurring basis. Use the :func:`~.task` decorator on functions or methods to mark them as
    tasks, and then use this class's methods to schedule them.

    Tasks can define an error handler:

    .. code-block:: py

        class Refresher:
            @task(is_unique=True)
            async def refresh(self):
                pass  # task code here

            @refresh.error
            async def refresh_error(self, exc: Exception):
                pass  # handle exception here

        scheduler.schedule_task_in(refresher.refresh, 300, every=300)  # every 5 minutes

    A recurring task does not start its next run until the previous one has returned; if a run
    overruns the interval, the next one starts immediately after.

    Any error is also passed to the ``on_error`` hook given at construction, even if a local error
    handler is defined. Errors never stop a recurring task.

    :param loop: The event loop to run tasks on.
    :param on_error: Optional coroutine ``on_error(task, timestamp, exception)``.
    """
    def __init__(self, loop: asyncio.AbstractEventLoop, on_error: Optional[ErrorHook]=None):
        self.loop = loop
        self.on_error = on_error
        self.tasks = {}  # type: Dict[Task, Dict[float, TaskInstance]]

    async def dispatch_error(self, task: Task, timestamp: float, e: Exception):
        if self.on_error is not None:
            # noinspection PyBroadException
            try:
                await self.on_error(task, timestamp, e)
            except Exception:
                logger.exception("Error in scheduler error hook for {!s}".format(task))

    def _add_task(self,
                  task: Task, at_loop_time: float,
                  args: Sequence[Any], kwargs: Mapping[str, Any],
                  every: float=None, times: int=None) -> TaskInstance:

        if not isinstance(task, Task):
            raise ValueError("Scheduled tasks must be decorated with scheduler.task")

        if task.is_unique:
            # if already have task, and not rescheduling from within the same task
            existing_tasks = self.get_instances(task)
            is_resched = len(existing_tasks) == 1 and existing_tasks[0].is_current()
            if existing_tasks and not is_resched:
                raise asyncio.InvalidStateError(
                    'Task {} is set unique and already exists'.format(task)
                )

        task_inst = TaskInstance(self, task, at_loop_time, task.instance, args, kwargs)
        task_inst.async_task = self.loop.create_task(
            self._runner(task_inst, at_loop_time, every, times)
        )
        self.tasks.setdefault(task, {})[at_loop_time] = task_inst
        logger.debug("Task added: {!s}, {:.2f} (now={:.2f})"
            .format(task, at_loop_time, self.loop.time()))
        return task_inst

    def _del_task(self, task_inst: TaskInstance):
        instances = self.tasks.get(task_inst.task)
        if instances is None:
            return
        if instances.get(task_inst.timestamp) is task_inst:
            del instances[task_inst.timestamp]
        if not instances:
            del self.tasks[task_inst.task]

    def schedule_task_in(self, task: Task, in_time: Union[float, timedelta],
                         *, args: Sequence[Any]=(), kwargs: Mapping[str, Any]=None,
                         every: Union[float, timedelta]=None, times: int=None) -> TaskInstance:
        """
        Schedule a task to run in a certain amount of time. By default, will run the task only once;
        if ``every`` is specified, runs the task recurrently up to ``times`` times.

        :param task: The task to run (a coroutine decorated with :func:`task`).
        :param in_time: In how much time to run the task, in seconds or as a timedelta.
        :param args: Positional args to pass to the task. If the task is a method, do NOT include
            the ``self`` argument's value here.
        :param kwargs: Keyword args to pass to the task.
        :param every: How often to repeat the task, in seconds or as a timedelta (> 0s). Optional.
        :param times: How many times to run the task. If ``every`` is set but ``times`` is not,
            the task is repeated forever.
        :return: A TaskInstance, which can be used to later cancel this task.
        """
        if not kwargs:
            kwargs = {}

        in_time = _to_seconds(in_time)

        if every:
            every = _to_seconds(every)
            logger.info("Scheduling task {!s} in {:.2f}s, recurring every {:.2f}s for {} times"
                .format(task, in_time, every, str(times) if times else 'infinite'))
        else:
            logger.info("Scheduling task {!s} in {:.2f}s".format(task, in_time))

        at_loop_time = self.loop.time() + in_time
        return self._add_task(task, at_loop_time, args, kwargs, every, times)

    async def _runner(self,
                      task_inst: TaskInstance,
                      at_loop_time: float,
                      every: float=None,
                      times: int=None
                      ):
        task_id = '{!s}@{:.2f}'.format(task_inst.task, task_inst.timestamp)

        if not every or every <= 0:
            times = 1

        target_time = at_loop_time
        count = 0
        try:
            while times is None or count < times:
                wait_time = target_time - self.loop.time()
                logger.debug("Task {}: Waiting {:.1f}s...".format(task_id, wait_time))
                await asyncio.sleep(max(wait_time, 0))

                logger.debug("Task {}: Running (count so far: {:d})".format(task_id, count))
                await task_inst.run()

                count += 1
                if every and every > 0:
                    target_time += every
        except asyncio.CancelledError:
            logger.info("Task {!s} cancelled.".format(task_id))
            raise
        finally:
            self._del_task(task_inst)
            if count > 1:
                logger.info("Recurring task {} ran {:d} times".format(task_id, count))

    def get_instances(self, task: Task) -> List[TaskInstance]:
        try:
            return list(self.tasks[task].values())
        except KeyError:
            return []

    def cancel_task(self, instance: TaskInstance):
        """
        Cancel a specific instance of a scheduled task. The instance is unregistered immediately,
        so a unique task can be rescheduled straight away.

        :param instance: The task instance (returned by :meth:`~.schedule_task_in`) to cancel.
        :raise asyncio.InvalidStateError: Task is already done, does not exist or was previously
            cancelled.
        """
        try:
            task_inst = self.tasks[instance.task][instance.timestamp]
        except KeyError:
            raise asyncio.InvalidStateError("Task {!s} does not exist, is finished or cancelled"
                .format(instance))
        if task_inst.async_task is None:
            raise asyncio.InvalidStateError("Task {!s} was not started".format(instance))
        task_inst.async_task.cancel()
        self._del_task(task_inst)

    def cancel_all(self, task: Task=None):
        """
        Cancel all future-scheduled tasks, either of a specific task (if specified) or globally.
        This method will not cancel the currently running task (since that would immediately
        interrupt it!).

        :param task: If specified, cancel only instances of this task.
        """
        if task is not None:
            instances = self.get_instances(task)
            if not instances:
                logger.debug("No task instances for task {!s}".format(task))
        else:
            instances = [inst for task_map in self.tasks.values() for inst in task_map.values()]

        for task_inst in instances:
            if not task_inst.is_current():
                task_inst.cancel()
