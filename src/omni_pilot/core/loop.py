"""
loop.py - The agent loop: look, ask, act, check

One ``AgentLoop.run(instruction)`` drives iterations until the model says
``complete`` or ``error``, the iteration cap is hit, too many errors happen
in a row, or the cancellation token is stopped.

Each iteration:
    1. honour stop, the error budget, and pause
    2. capture the screen (reused when the last iteration sent no input)
    3. append the user turn
    4. ask the provider (retried with backoff)
    5. decode; a bad response becomes corrective feedback for the next turn
    6-7. confirm if dangerous, execute, verify the screen changed
       (driver errors are re-executed against their own budget)
    8. append the outcome
    9. publish one state snapshot per phase

Only this module appends to the conversation and writes run state.

Usage:
    loop = AgentLoop(provider, sampler, driver, config.agent)
    outcome = await loop.run("open the settings and enable dark mode")
"""

from __future__ import annotations

import time
from dataclasses import dataclass

from omni_pilot.config.logging import get_logger
from omni_pilot.config.models import AgentConfig
from omni_pilot.providers.base import (
    ActionSchema,
    PlainText,
    Provider,
    ProviderResponse,
    ToolInvocation,
)

from . import events
from .actions import ActionBase, ActionResult, Batch
from .cancel import CancellationToken
from .confirmation import ConfirmationGate
from .conversation import ConversationStore
from .decoder import decode_invocation, decode_text
from .delay import DelayController
from .drivers import Capture, InputDriver, ScreenSampler, run_blocking
from .errors import DecodeError, RunStopped
from .executor import ActionExecutor
from .history import ActionEntry, SessionHistory
from .prompts import build_action_schema
from .recovery import RetryPolicy, classify_capture_error, classify_error, retry_with_policy
from .state import AgentStatus, RunStateOwner
from .verification import VerifyingExecutor

log = get_logger("omni_pilot.loop")

_REFUSALS = ("ConfirmationDenied", "ConfirmationTimedOut")


@dataclass
class RunOutcome:
    """How a run ended.

    ``final_status`` is one of completed, error, stopped, max_iterations.
    """

    status: AgentStatus
    final_status: str
    message: str | None
    iterations: int

    @property
    def success(self) -> bool:
        return self.status is AgentStatus.COMPLETED


class _RunEnded(Exception):
    def __init__(self, outcome: RunOutcome) -> None:
        super().__init__(outcome.final_status)
        self.outcome = outcome


class AgentLoop:
    """Orchestrates one instruction at a time."""

    def __init__(
        self,
        provider: Provider,
        sampler: ScreenSampler,
        driver: InputDriver,
        config: AgentConfig | None = None,
        state: RunStateOwner | None = None,
        cancel: CancellationToken | None = None,
        gate: ConfirmationGate | None = None,
    ) -> None:
        self.provider = provider
        self.sampler = sampler
        self.config = config or AgentConfig()
        self.state = state or RunStateOwner()
        self.cancel = cancel or CancellationToken()
        self.gate = gate or ConfirmationGate(
            self.state, timeout=self.config.confirmation_timeout_ms / 1000
        )
        self.delays = DelayController(self.config.speed_multiplier)
        self.executor = ActionExecutor(
            driver,
            delays=self.delays,
            gate=self.gate,
            confirm_dangerous=self.config.confirm_dangerous,
        )
        self.verifier = VerifyingExecutor(
            self.executor,
            sampler,
            delays=self.delays,
            max_retries=self.config.max_retries,
            retry_delay_ms=self.config.retry_delay_ms,
            enabled=self.config.enable_self_correction,
            max_execution_failures=self.config.max_consecutive_errors,
        )
        self.conversation = ConversationStore(self.config.max_history, self.config.keep_images)
        self.session: SessionHistory | None = None

        self._schema: ActionSchema | None = None
        self._schema_size: tuple[int, int] | None = None
        self._capture: Capture | None = None
        self._reuse_capture = False

    @property
    def bus(self) -> events.EventBus:
        return self.state.bus

    # =========================================================================
    # Run
    # =========================================================================

    async def run(self, instruction: str) -> RunOutcome:
        """Drive ``instruction`` to an end state. The conversation is kept afterwards."""
        cfg = self.config
        self.conversation = ConversationStore(cfg.max_history, cfg.keep_images)
        self.session = SessionHistory(instruction=instruction)
        self._schema = None
        self._schema_size = None
        self._capture = None
        self._reuse_capture = False

        self.state.begin_run(instruction, cfg.max_iterations, cfg.preview_mode)
        log.info(
            "loop.started",
            instruction=instruction,
            provider=self.provider.name,
            preview=cfg.preview_mode,
        )

        try:
            while True:
                await self._iteration(instruction)
        except _RunEnded as ended:
            outcome = ended.outcome
        except RunStopped:
            outcome = self._stopped()
        except Exception as e:
            self.state.fail(f"Unexpected error: {e}")
            self.session.complete("error")
            log.error("loop.crashed", error=str(e), exc_info=True)
            raise

        self.session.complete(outcome.final_status)
        self.bus.emit(
            events.INSTRUCTION_COMPLETED,
            {
                "instruction": instruction,
                "success": outcome.success,
                "status": outcome.final_status,
                "message": outcome.message,
            },
        )
        log.info(
            "loop.finished",
            status=outcome.final_status,
            iterations=outcome.iterations,
            message=outcome.message,
        )
        return outcome

    def _end(self, status: AgentStatus, final_status: str, message: str | None) -> _RunEnded:
        if status is AgentStatus.ERROR:
            self.state.fail(message or final_status)
        else:
            self.state.set_status(status, last_result=message)
        return _RunEnded(
            RunOutcome(
                status=status,
                final_status=final_status,
                message=message,
                iterations=self.state.get("iteration"),
            )
        )

    def _stopped(self) -> RunOutcome:
        killed = self.cancel.killed
        message = "Kill switch triggered" if killed else "Stopped by user"
        self.state.set_status(AgentStatus.IDLE, last_result=message, kill_switch_triggered=killed)
        return RunOutcome(
            status=AgentStatus.IDLE,
            final_status="stopped",
            message=message,
            iterations=self.state.get("iteration"),
        )

    # =========================================================================
    # One iteration
    # =========================================================================

    async def _iteration(self, instruction: str) -> None:
        cfg = self.config

        # 1. signals and budgets
        self.cancel.raise_if_stopped()
        errors = self.state.get("consecutive_errors")
        if errors >= cfg.max_consecutive_errors:
            raise self._end(
                AgentStatus.ERROR,
                "error",
                f"Too many consecutive errors ({errors}): {self.state.get('last_error')}",
            )
        if self.cancel.paused:
            self.state.set_status(AgentStatus.PAUSED)
            log.info("loop.paused")
            await self.cancel.wait_if_paused()
            self.cancel.raise_if_stopped()
            self.state.set_status(AgentStatus.RUNNING)
            log.info("loop.resumed")

        iteration = self.state.get("iteration") + 1
        if iteration > cfg.max_iterations:
            raise self._end(
                AgentStatus.ERROR,
                "max_iterations",
                f"Max iterations reached ({cfg.max_iterations})",
            )
        self.state.update(iteration=iteration, retry_count=0)

        # 2-3. observe
        capture = await self._observe()
        first_turn = len(self.conversation) == 0
        text = instruction if first_turn else "Here is the screen now. Continue with the task."
        self.conversation.add_user(
            text,
            image=capture.to_base64(),
            width=capture.width,
            height=capture.height,
            media_type=capture.media_type,
        )
        self.state.publish()

        # 4. ask
        started = time.monotonic()
        response = await self._ask(self._schema_for(capture, instruction))
        llm_elapsed = time.monotonic() - started
        if response is None:
            self._reuse_capture = True
            await self.cancel.sleep(self.delays.provider_error)
            return
        self.state.add_tokens(
            response.usage.input_tokens, response.usage.output_tokens, response.elapsed
        )
        self.session.update_metrics(response.usage.input_tokens, response.usage.output_tokens)

        # 5. decode
        decoded = self._decode(response, iteration)
        self.state.publish()
        if decoded is None:
            self._reuse_capture = True
            await self.cancel.sleep(self.delays.parse_error)
            return
        action, invocation_id = decoded

        # 6-8. act
        result = await self._act(action, iteration)
        self._record(action, result, invocation_id, iteration, response)
        self.state.publish()

        if result.fatal:
            raise self._end(
                AgentStatus.ERROR,
                "error",
                f"Action failed {cfg.max_consecutive_errors} times in a row: {result.error}",
            )
        if result.completed:
            if result.success:
                raise self._end(AgentStatus.COMPLETED, "completed", result.message)
            raise self._end(AgentStatus.ERROR, "error", result.message)

        await self.cancel.sleep(self.delays.remaining_iteration_delay(llm_elapsed))

    # =========================================================================
    # Phases
    # =========================================================================

    async def _observe(self) -> Capture:
        if self._reuse_capture and self._capture is not None:
            self._reuse_capture = False
            log.debug("loop.capture_reused")
            return self._capture

        async def grab() -> Capture:
            return await run_blocking(self.sampler.capture)

        try:
            outcome = await retry_with_policy(
                grab,
                RetryPolicy.for_screenshots(),
                cancel=self.cancel,
                classify=classify_capture_error,
            )
        except RunStopped:
            raise
        except Exception as e:
            raise self._end(AgentStatus.ERROR, "error", f"Screen capture failed: {e}") from e
        if outcome.retried:
            log.info("loop.capture_retried", attempts=outcome.attempts)
        self._capture = outcome.result
        self._reuse_capture = False
        return self._capture

    def _schema_for(self, capture: Capture, instruction: str) -> ActionSchema:
        size = (capture.width, capture.height)
        if self._schema is None or self._schema_size != size:
            self._schema = build_action_schema(
                capture.width, capture.height, instruction, tips=self.config.task_tips
            )
            self._schema_size = size
        return self._schema

    def _on_chunk(self, chunk: str) -> None:
        self.bus.emit(events.LLM_CHUNK, {"text": chunk})

    def _on_provider_retry(self, attempt: int, error: BaseException, delay: float) -> None:
        self.state.set_status(
            AgentStatus.RETRYING, retry_count=attempt, last_error=str(error)
        )

    async def _ask(self, schema: ActionSchema) -> ProviderResponse | None:
        """Call the provider. Returns None after a non-fatal failure."""
        try:
            outcome = await retry_with_policy(
                lambda: self.provider.send(
                    self.conversation.messages,
                    schema,
                    on_chunk=self._on_chunk,
                    cancel=self.cancel,
                ),
                RetryPolicy.for_llm_calls(),
                cancel=self.cancel,
                on_retry=self._on_provider_retry,
            )
        except RunStopped:
            raise
        except Exception as e:
            return self._provider_failed(e)
        finally:
            if self.state.status is AgentStatus.RETRYING:
                self.state.set_status(AgentStatus.RUNNING)

        if outcome.retried:
            self.state.add_retries(outcome.attempts - 1)
        return outcome.result

    def _provider_failed(self, error: Exception) -> None:
        """Count a failed call; fatal classes end the run."""
        verdict = classify_error(error)
        count = self.state.count_error(str(error))
        log.warning(
            "loop.provider_failed",
            error=str(error),
            kind=verdict.kind.value,
            consecutive_errors=count,
        )
        if not verdict.retryable:
            raise self._end(AgentStatus.ERROR, "error", str(error)) from error
        return None

    def _decode(
        self, response: ProviderResponse, iteration: int
    ) -> tuple[ActionBase, str | None] | None:
        """Decode and append the model turn. Returns None after a recoverable error."""
        reply = response.reply
        try:
            match reply:
                case ToolInvocation():
                    self.conversation.add_invocation(
                        reply.id, reply.name, reply.args, reply.text or None
                    )
                    return decode_invocation(reply), reply.id
                case PlainText(text=text):
                    self.conversation.add_assistant_text(text)
                    return decode_text(text), None
        except DecodeError as e:
            linked = reply.id if isinstance(reply, ToolInvocation) else None
            self.conversation.add_outcome(
                False, message=e.feedback, error=type(e).__name__, invocation_id=linked
            )
            count = self.state.count_error(str(e))
            self.bus.emit(
                events.PARSE_ERROR,
                {"error": str(e), "feedback": e.feedback, "raw": e.raw[:500]},
            )
            self.session.add_entry(
                ActionEntry(
                    iteration=iteration,
                    action_type="parse_error",
                    llm_response=e.raw,
                    success=False,
                    error_message=str(e),
                )
            )
            log.warning("loop.decode_failed", error=str(e), consecutive_errors=count)
            if e.fatal:
                raise self._end(AgentStatus.ERROR, "error", str(e)) from e
            return None
        raise TypeError(f"Unexpected reply type {type(reply).__name__}")

    async def _act(self, action: ActionBase, iteration: int) -> ActionResult:
        description = action.describe()
        if self.config.preview_mode:
            self.state.update(last_action=f"[PREVIEW] {description}")
            self._reuse_capture = True
            if action.is_terminal:
                return await self.executor.perform(action, self.cancel)
            return ActionResult.ok(f"Preview: {description} was not executed")

        self.state.update(last_action=description)
        self.state.publish()
        await self._indicate(action)

        def on_retry(attempt: int) -> None:
            self.state.set_status(AgentStatus.RETRYING, retry_count=attempt)

        result = await self.verifier.execute(action, self.cancel, on_retry=on_retry)
        if self.state.status is AgentStatus.RETRYING:
            self.state.set_status(AgentStatus.RUNNING)
        if result.error in _REFUSALS:
            self._reuse_capture = True
        return result

    async def _indicate(self, action: ActionBase) -> None:
        targets = action.actions if isinstance(action, Batch) else [action]
        for target in targets:
            point = target.point()
            if point is None:
                continue
            self.bus.emit(
                events.ACTION_INDICATOR,
                {
                    "action": target.name,
                    "x": point[0],
                    "y": point[1],
                    "description": target.describe(),
                },
            )
            await self.cancel.sleep(self.delays.indicator)
            return

    def _record(
        self,
        action: ActionBase,
        result: ActionResult,
        invocation_id: str | None,
        iteration: int,
        response: ProviderResponse,
    ) -> None:
        message = result.message
        if result.warnings:
            message = f"{message} (warning: {'; '.join(result.warnings)})"
        self.conversation.add_outcome(
            result.success, message=message, error=result.error, invocation_id=invocation_id
        )

        if result.retry_count:
            self.state.add_retries(result.retry_count)
        self.state.update(last_result=message)
        self.state.record_action(action.describe(), is_error=not result.success)
        if result.success:
            self.state.clear_errors()
        elif result.error in _REFUSALS:
            log.info("loop.action_refused", action=action.describe(), reason=result.error)
        elif result.execution_failed:
            log.warning("loop.driver_failed", error=result.error, fatal=result.fatal)
        elif not result.completed:
            count = self.state.count_error(result.error or message)
            log.warning("loop.action_failed", error=result.error, consecutive_errors=count)

        self.session.add_entry(
            ActionEntry(
                iteration=iteration,
                action_type=action.name,
                action_details=action.model_dump(mode="json"),
                llm_response=_response_text(response),
                success=result.success,
                error_message=result.error,
                result_message=message,
            )
        )


def _response_text(response: ProviderResponse) -> str:
    reply = response.reply
    if isinstance(reply, ToolInvocation):
        return reply.text or f"{reply.name} {reply.args}"
    return reply.text


__all__ = ["AgentLoop", "RunOutcome"]
