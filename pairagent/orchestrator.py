"""Orchestrator: drives Instructor rounds and Worker sub-loops for a session."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from pairagent.agents.base import AgentClient, AgentError, CancellationToken, RunAborted
from pairagent.agents.prompts import build_instructor_prompt, build_worker_prompt, signals_done
from pairagent.schemas import (
    COORDINATION_TOOLS,
    AgentResponse,
    DoneMessage,
    ErrorMessage,
    InstructorMessage,
    Message,
    RoundCompleteMessage,
    ServerMessage,
    SessionStatus,
    StatusUpdateMessage,
    StreamEvent,
    SystemMessage,
    ThinkingMessage,
    ToolCall,
    ToolName,
    ToolResult,
    ToolResultMessage,
    ToolUseMessage,
    WaitingInputMessage,
    WorkerMessage,
)
from pairagent.session.events import Session
from pairagent.session.registry import (
    SessionEndedError,
    SessionLockedError,
    SessionNotFoundError,
    SessionRegistry,
)
from pairagent.sink import MessageSink, NullSink
from pairagent.tools.definitions import (
    INSTRUCTOR_TOOL_NAMES,
    INSTRUCTOR_TOOLS,
    WORKER_TOOL_NAMES,
    WORKER_TOOLS,
)
from pairagent.tools.executor import ToolExecutor

logger = logging.getLogger(__name__)

MAX_ROUNDS = 50
MAX_WORKER_ITERATIONS = 20

WORKER_PREFIX = "[Worker] "
WORKER_FALLBACK = "Worker completed task."
WAITING_PROMPT = "Waiting for your input..."
INTERRUPTED_MESSAGE = "Interrupted by user"
ENDED_MESSAGE = "Session ended"
MAX_ROUNDS_MESSAGE = "Maximum rounds reached. Please provide new instructions."
NO_WORKER_MESSAGE = "This backend runs its own tool loop; no separate Worker was started."

# Stop reasons that mean the model yielded the turn back to the user
END_TURN_REASONS = (None, "end_turn")

ClientFactory = Callable[[Session], AgentClient]
ExecutorFactory = Callable[[Session], ToolExecutor]
Observer = Callable[[ServerMessage], None]


class RunOutcome(str, Enum):
    """How a run ended."""

    WAITING_INPUT = "waiting_input"
    DONE = "done"
    MAX_ROUNDS = "max_rounds"
    INTERRUPTED = "interrupted"
    ERROR = "error"


@dataclass
class WorkerContext:
    """Transient Worker conversation; never persisted."""

    system: str
    history: list[Message] = field(default_factory=list)


@dataclass
class RunContext:
    """State of one in-flight run."""

    session: Session
    signal: CancellationToken
    observer: Observer | None = None
    client: AgentClient | None = None
    executor: ToolExecutor | None = None

    @property
    def session_id(self) -> str:
        return self.session.session_id


class Orchestrator:
    """Drives Instructor runs, at most one per session."""

    def __init__(
        self,
        registry: SessionRegistry,
        client_factory: ClientFactory,
        executor_factory: ExecutorFactory,
        sink: MessageSink | None = None,
        max_rounds: int = MAX_ROUNDS,
        max_worker_iterations: int = MAX_WORKER_ITERATIONS,
    ):
        """Initialize the orchestrator.

        Args:
            registry: Session registry (single writer of session state)
            client_factory: Builds the model backend for a session
            executor_factory: Builds the tool executor for a session
            sink: Receives every emitted message
            max_rounds: Ceiling on a session's completed Instructor rounds
            max_worker_iterations: Model turns allowed per Worker sub-loop
        """
        self.registry = registry
        self.client_factory = client_factory
        self.executor_factory = executor_factory
        self.sink = sink or NullSink()
        self.max_rounds = max_rounds
        self.max_worker_iterations = max_worker_iterations
        self._active_runs: dict[str, RunContext] = {}
        self._workers: dict[str, WorkerContext] = {}

    # --- Public API ---

    def is_running(self, session_id: str) -> bool:
        return session_id in self._active_runs

    def interrupt(self, session_id: str) -> bool:
        """Request cancellation of a session's run.

        Returns:
            True if a run was signalled, False if none was active
        """
        ctx = self._active_runs.get(session_id)
        if ctx is None:
            return False
        logger.info(f"Interrupt requested for session {session_id}")
        ctx.signal.cancel()
        return True

    def forget_worker(self, session_id: str) -> None:
        self._workers.pop(session_id, None)

    async def run(self, session_id: str, observer: Observer | None = None) -> RunOutcome:
        """Run Instructor rounds until the session needs input or finishes.

        Args:
            session_id: Session to run
            observer: Optional per-run callback receiving every message

        Returns:
            RunOutcome describing why the run stopped

        Raises:
            SessionNotFoundError: Unknown session
            SessionEndedError: Session has ended
            SessionLockedError: Another run holds the session
        """
        session = self.registry.load(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        if session.status == SessionStatus.ENDED:
            raise SessionEndedError(session_id)
        if session_id in self._active_runs or not self.registry.acquire_lock(session_id):
            raise SessionLockedError(session_id)

        ctx = RunContext(session=session, signal=CancellationToken(), observer=observer)
        self._active_runs[session_id] = ctx
        logger.info(f"Run started for session {session_id}")

        outcome = RunOutcome.ERROR
        try:
            ctx.client = self.client_factory(session)
            ctx.executor = self.executor_factory(session)
            outcome = await self._run_instructor(ctx)

        except RunAborted:
            outcome = RunOutcome.INTERRUPTED
            logger.info(f"Run interrupted for session {session_id}")
            self._emit(ctx, SystemMessage(content=INTERRUPTED_MESSAGE, level="info"))
            self._settle(ctx)

        except (SessionEndedError, SessionNotFoundError):
            outcome = RunOutcome.INTERRUPTED
            logger.info(f"Session {session_id} was ended or deleted during its run")
            self._emit(ctx, SystemMessage(content=ENDED_MESSAGE, level="info"))

        except Exception as e:
            outcome = RunOutcome.ERROR
            logger.error(f"Run failed for session {session_id}: {e}", exc_info=True)
            details = e.details() if isinstance(e, AgentError) else None
            self._emit(ctx, ErrorMessage(message=f"Error: {e}", details=details))
            self._settle(ctx)

        finally:
            self.registry.release_lock(session_id)
            self._active_runs.pop(session_id, None)

        logger.info(f"Run finished for session {session_id}: {outcome.value}")
        return outcome

    # --- Instructor loop ---

    async def _run_instructor(self, ctx: RunContext) -> RunOutcome:
        system = build_instructor_prompt(ctx.session.work_dir)

        while ctx.session.round_count < self.max_rounds:
            ctx.signal.raise_if_cancelled()
            self._set_status(ctx, SessionStatus.THINKING)

            response = await self._converse(ctx, system, ctx.session.history, INSTRUCTOR_TOOLS, worker=False)
            if response.resume_token and response.resume_token != ctx.session.cli_session_id:
                self.registry.link_cli_session(ctx.session_id, response.resume_token)

            self.registry.add_instructor_message(ctx.session_id, response.content)
            text = response.text
            if text:
                self._emit(ctx, InstructorMessage(content=text))

            calls = response.tool_calls
            if not calls:
                self._set_status(ctx, SessionStatus.WAITING)
                if response.stop_reason in END_TURN_REASONS and not signals_done(text):
                    self._emit(ctx, WaitingInputMessage(prompt=text or WAITING_PROMPT))
                    return RunOutcome.WAITING_INPUT
                self._emit(ctx, DoneMessage())
                return RunOutcome.DONE

            results = await self._execute_calls(ctx, calls)
            self.registry.add_tool_results(ctx.session_id, results)

            round_number = self.registry.complete_round(ctx.session_id)
            self._emit(ctx, RoundCompleteMessage(round=round_number))

        logger.warning(f"Session {ctx.session_id} reached {self.max_rounds} rounds")
        self._emit(ctx, SystemMessage(content=MAX_ROUNDS_MESSAGE, level="warning"))
        self._set_status(ctx, SessionStatus.WAITING)
        return RunOutcome.MAX_ROUNDS

    async def _execute_calls(self, ctx: RunContext, calls: list[ToolCall]) -> list[ToolResult]:
        """Execute a turn's tool calls in order; one result per call."""
        results = []
        for call in calls:
            ctx.signal.raise_if_cancelled()
            self._emit(ctx, ToolUseMessage(tool=call.name, input=call.input))

            if call.name in COORDINATION_TOOLS:
                result = await self._run_worker(ctx, call)
            else:
                if ctx.session.status != SessionStatus.EXECUTING:
                    self._set_status(ctx, SessionStatus.EXECUTING)
                result = await ctx.executor.execute(call, allowed=INSTRUCTOR_TOOL_NAMES)

            results.append(result)
            self._emit(ctx, ToolResultMessage(tool=call.name, output=result.content, success=not result.is_error))
        return results

    # --- Worker sub-loop ---

    async def _run_worker(self, ctx: RunContext, call: ToolCall) -> ToolResult:
        """Run the Worker until it stops calling tools.

        call_worker starts a fresh context; tell_worker continues the
        session's current one (or starts a default one).
        """
        if not getattr(ctx.client, "supports_workers", True):
            return ToolResult(tool_use_id=call.id, content=NO_WORKER_MESSAGE)

        work_dir = ctx.session.work_dir
        if call.name == ToolName.CALL_WORKER.value:
            worker = WorkerContext(system=build_worker_prompt(work_dir, call.input.get("system_prompt")))
            self._workers[ctx.session_id] = worker
            message = call.input.get("instruction") or call.input.get("task")
        else:
            worker = self._workers.get(ctx.session_id)
            if worker is None:
                worker = WorkerContext(system=build_worker_prompt(work_dir))
                self._workers[ctx.session_id] = worker
            message = call.input.get("message")

        if not isinstance(message, str) or not message.strip():
            return ToolResult(
                tool_use_id=call.id,
                content=f"{call.name} requires a non-empty instruction",
                is_error=True,
            )

        logger.info(f"Worker started for session {ctx.session_id} via {call.name}")
        worker.history.append(Message(role="user", content=message))
        final_text = ""

        for _ in range(self.max_worker_iterations):
            ctx.signal.raise_if_cancelled()
            response = await self._converse(ctx, worker.system, worker.history, WORKER_TOOLS, worker=True)
            worker.history.append(Message(role="assistant", content=response.content))

            text = response.text
            if text:
                final_text = text
                self._emit(ctx, WorkerMessage(content=text))

            calls = response.tool_calls
            if not calls:
                break

            results = []
            for worker_call in calls:
                ctx.signal.raise_if_cancelled()
                label = f"{WORKER_PREFIX}{worker_call.name}"
                self._emit(ctx, ToolUseMessage(tool=label, input=worker_call.input))
                result = await ctx.executor.execute(worker_call, allowed=WORKER_TOOL_NAMES)
                results.append(result)
                self._emit(ctx, ToolResultMessage(tool=label, output=result.content, success=not result.is_error))

            worker.history.append(Message(role="user", content=[r.to_block() for r in results]))
        else:
            logger.warning(f"Worker for session {ctx.session_id} hit {self.max_worker_iterations} iterations")

        return ToolResult(tool_use_id=call.id, content=final_text or WORKER_FALLBACK)

    # --- Helpers ---

    async def _converse(
        self,
        ctx: RunContext,
        system: str,
        history: list[Message],
        tools: list[dict],
        worker: bool,
    ) -> AgentResponse:
        prefix = WORKER_PREFIX if worker else ""

        def on_stream(event: StreamEvent) -> None:
            if event.type == "thinking" and event.content:
                self._emit(ctx, ThinkingMessage(content=prefix + event.content))
            elif event.type == "tool_use" and event.tool_use is not None:
                if not getattr(ctx.client, "executes_tools", False):
                    return
                self._emit(ctx, ToolUseMessage(tool=prefix + event.tool_use.name, input=event.tool_use.input))

        response = await ctx.client.converse(
            system=system,
            history=list(history),
            tools=tools,
            signal=ctx.signal,
            on_stream=on_stream,
        )
        ctx.signal.raise_if_cancelled()
        return response

    def _set_status(self, ctx: RunContext, status: SessionStatus) -> None:
        self.registry.update_status(ctx.session_id, status)
        self._emit(
            ctx,
            StatusUpdateMessage(
                session_id=ctx.session_id,
                status=status,
                round=ctx.session.round_count,
                model=ctx.session.model,
            ),
        )

    def _settle(self, ctx: RunContext) -> None:
        """Return an aborted or failed session to waiting, if storage allows."""
        if ctx.session.status in (SessionStatus.WAITING, SessionStatus.ENDED):
            return
        try:
            self._set_status(ctx, SessionStatus.WAITING)
        except Exception as e:
            logger.error(f"Could not reset status of session {ctx.session_id}: {e}")

    def _emit(self, ctx: RunContext, message: ServerMessage) -> None:
        """Deliver to the sink and the run's observer; delivery is best effort."""
        try:
            self.sink.emit(ctx.session_id, message)
        except Exception as e:
            logger.error(f"Sink failed for session {ctx.session_id}: {e}", exc_info=True)
        if ctx.observer is not None:
            try:
                ctx.observer(message)
            except Exception as e:
                logger.error(f"Observer failed for session {ctx.session_id}: {e}", exc_info=True)
