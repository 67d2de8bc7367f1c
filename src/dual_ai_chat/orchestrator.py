"""
Orchestrator - turn-taking state machine for the two-persona discussion.

Flow for one query:
1. Logical persona gives its opening analysis
2. Turn pairs: Creative replies, then Logical answers
3. The termination policy is consulted after every single turn
4. Logical persona synthesizes the final answer

Every completion call goes through the RetryExecutor. When a step exhausts
its retry budget a FailureCheckpoint is raised and the query ends; resume()
re-sends the stored request and re-enters the loop at the matching point.
"""

import time
from typing import Optional, Callable, Awaitable, List, Tuple

from dual_ai_chat.checkpoint import FailureCheckpoint, Step, StepKind
from dual_ai_chat.completion.base import CompletionRequest, CompletionResult, CompletionService
from dual_ai_chat.config import AppConfig, DiscussionMode
from dual_ai_chat.logging import bind_run, get_logger
from dual_ai_chat.notepad import NotepadStore, NotepadDocument
from dual_ai_chat.parser import ParsedResponse, ResponseParser
from dual_ai_chat.prompts import PromptBuilder
from dual_ai_chat.resilience import (
    AuthenticationFailure,
    CompletionFailure,
    RetryExecutor,
    RetryExhaustedError,
    RetryPolicy,
    credentials,
)
from dual_ai_chat.safety.cancellation import CancellationToken, DiscussionCancelled
from dual_ai_chat.state import (
    DiscussionContext,
    DiscussionEvent,
    DiscussionPhase,
    EventType,
    ImagePart,
    Message,
    MessagePurpose,
    MessageSender,
    QueryOutcome,
    new_message_id,
    utc_now,
)
from dual_ai_chat.termination import (
    TerminationDecision,
    TerminationPolicy,
    clamp_fixed_turns,
    create_policy,
)

logger = get_logger(__name__)


EventListener = Callable[[DiscussionEvent], None]


class DiscussionError(Exception):
    """Base class for orchestrator errors."""
    pass


class DiscussionBusyError(DiscussionError):
    """A query or resume is already running."""
    pass


class CredentialsInvalidError(DiscussionError):
    """The credentials were rejected earlier in this process."""
    pass


class NoCheckpointError(DiscussionError):
    """There is no (matching) failure checkpoint to resume."""
    pass


class StepFailed(DiscussionError):
    """A step exhausted its retries; carries the raised checkpoint."""

    def __init__(self, checkpoint: FailureCheckpoint):
        self.checkpoint = checkpoint
        super().__init__(f"Step {checkpoint.step.identifier} failed: {checkpoint.last_error}")


class DiscussionOrchestrator:
    """
    Runs the Logical/Creative discussion for one query at a time.

    Owns the transcript, the shared notepad and the (single) failure
    checkpoint. Every state change is published to subscribers as a
    DiscussionEvent, synchronously and in order.
    """

    def __init__(
        self,
        config: AppConfig,
        service: CompletionService,
        executor: Optional[RetryExecutor] = None,
        parser: Optional[ResponseParser] = None,
        notepad: Optional[NotepadStore] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Application configuration
            service: Completion service used for every persona turn
            executor: Retry executor (built from config.retry if not provided)
            parser: Response parser (built from config.prompts if not provided)
            notepad: Shared notepad (seeded with the configured template if not provided)
        """
        self.config = config
        self.service = service
        self.executor = executor or RetryExecutor(
            RetryPolicy(
                max_retries=config.retry.max_auto_retries,
                initial_delay=config.retry.base_delay_seconds,
            ),
            auth_error_marker=config.retry.auth_error_marker,
        )
        prompts = config.prompts
        self.parser = parser or ResponseParser(
            notepad_start_marker=prompts.notepad_start_marker,
            notepad_end_marker=prompts.notepad_end_marker,
            completion_marker=prompts.completion_marker,
        )
        self.notepad = notepad or NotepadStore(prompts.notepad_initial_content)

        self._messages: List[Message] = []
        self._listeners: List[EventListener] = []
        self._checkpoint: Optional[FailureCheckpoint] = None
        self._phase = DiscussionPhase.IDLE
        self._busy = False
        self._token: Optional[CancellationToken] = None
        self._welcome_id: Optional[str] = None
        self._generation = 0

        self._post_welcome()

        logger.info(
            "Orchestrator initialized",
            model=config.gemini.model,
            mode=config.discussion.mode.value,
            fixed_turns=config.discussion.fixed_turns,
            max_auto_retries=config.retry.max_auto_retries,
        )

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def messages(self) -> Tuple[Message, ...]:
        """Transcript, oldest first."""
        return tuple(self._messages)

    @property
    def checkpoint(self) -> Optional[FailureCheckpoint]:
        """Pending failure checkpoint, if any."""
        return self._checkpoint

    @property
    def phase(self) -> DiscussionPhase:
        return self._phase

    @property
    def busy(self) -> bool:
        """True while a query or resume is running."""
        return self._busy

    def notepad_snapshot(self) -> NotepadDocument:
        return self.notepad.snapshot()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        """
        Register an event listener.

        Returns:
            A function that unsubscribes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: DiscussionEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error("Error in event listener", event_type=event.type.value, error=str(e))

    # ------------------------------------------------------------------
    # Transcript helpers
    # ------------------------------------------------------------------

    def _post(
        self,
        sender: MessageSender,
        purpose: MessagePurpose,
        text: str,
        duration_ms: Optional[int] = None,
        image: Optional[ImagePart] = None,
    ) -> Message:
        message = Message(
            id=new_message_id(),
            sender=sender,
            purpose=purpose,
            text=text,
            timestamp=utc_now(),
            duration_ms=duration_ms,
            image=image,
        )
        self._messages.append(message)
        self._emit(DiscussionEvent(type=EventType.MESSAGE_APPENDED, message=message))
        return message

    def _notice(self, text: str) -> Message:
        return self._post(MessageSender.SYSTEM, MessagePurpose.SYSTEM_NOTIFICATION, text)

    def _remove_message(self, message_id: Optional[str]) -> None:
        for index, message in enumerate(self._messages):
            if message.id == message_id:
                del self._messages[index]
                self._emit(DiscussionEvent(type=EventType.MESSAGE_REMOVED, message=message))
                return

    def _welcome_text(self) -> str:
        p = self.config.prompts
        discussion = self.config.discussion
        if discussion.mode == DiscussionMode.FIXED_TURNS:
            mode_text = f"fixed turns ({discussion.fixed_turns} rounds)"
        else:
            mode_text = "AI-driven (ends when both agree)"
        return (
            f"Welcome to Dual AI Chat! {p.logical_name} (logical) and {p.creative_name} "
            f"(creative) will discuss your query using {self.config.gemini.model}. "
            f"Discussion mode: {mode_text}."
        )

    def _post_welcome(self) -> None:
        self._remove_message(self._welcome_id)
        self._welcome_id = self._notice(self._welcome_text()).id
        if credentials.invalid:
            self._warn_credentials()

    def _warn_credentials(self) -> None:
        """Post the credentials warning unless it is already showing."""
        if any(m.purpose == MessagePurpose.CREDENTIALS_WARNING for m in self._messages):
            return
        reason = credentials.reason or "the API key was rejected"
        self._post(
            MessageSender.SYSTEM,
            MessagePurpose.CREDENTIALS_WARNING,
            f"Critical: the API key is invalid or missing ({reason}). "
            f"Set {self.config.gemini.api_key_env} to a valid key and restart.",
        )

    def _set_phase(self, phase: DiscussionPhase) -> None:
        if phase != self._phase:
            logger.debug("Phase transition", from_phase=self._phase.value, to_phase=phase.value)
            self._phase = phase

    # ------------------------------------------------------------------
    # Checkpoint bookkeeping
    # ------------------------------------------------------------------

    def _raise_checkpoint(self, checkpoint: FailureCheckpoint) -> None:
        self._checkpoint = checkpoint
        logger.warning("Failure checkpoint raised", **checkpoint.to_dict())
        self._emit(DiscussionEvent(type=EventType.CHECKPOINT_RAISED, checkpoint=checkpoint))

    def _clear_checkpoint(self) -> None:
        if self._checkpoint is None:
            return
        checkpoint = self._checkpoint
        self._checkpoint = None
        logger.info("Failure checkpoint cleared", step=checkpoint.step.identifier)
        self._emit(DiscussionEvent(type=EventType.CHECKPOINT_CLEARED, checkpoint=checkpoint))

    # ------------------------------------------------------------------
    # Per-run collaborators (settings may change between queries)
    # ------------------------------------------------------------------

    def _policy(self) -> TerminationPolicy:
        discussion = self.config.discussion
        return create_policy(discussion.mode, discussion.fixed_turns)

    def _builder(self) -> PromptBuilder:
        gemini = self.config.gemini
        return PromptBuilder(
            self.config.prompts,
            mode=self.config.discussion.mode,
            model=gemini.model,
            thinking_budget=gemini.budget_for(gemini.model),
        )

    def _name(self, persona: MessageSender) -> str:
        if persona == MessageSender.CREATIVE:
            return self.config.prompts.creative_name
        return self.config.prompts.logical_name

    def _progress_text(self, step: Step) -> str:
        logical = self.config.prompts.logical_name
        creative = self.config.prompts.creative_name
        model = self.config.gemini.model
        if step.kind == StepKind.INITIAL_TURN:
            return f"{logical} is analysing the query (using {model})..."
        if step.kind == StepKind.TURN_A:
            return f"{creative} is responding to {logical}, turn {step.turn_index + 1} (using {model})..."
        if step.kind == StepKind.TURN_B:
            return f"{logical} is responding to {creative}, turn {step.turn_index + 1} (using {model})..."
        return f"{logical} is synthesizing the discussion into a final answer (using {model})..."

    # ------------------------------------------------------------------
    # Inbound operations
    # ------------------------------------------------------------------

    async def start(self, user_input: str, image: Optional[ImagePart] = None) -> QueryOutcome:
        """
        Run a new query from the opening turn to the final answer.

        Any pending checkpoint is discarded and the notepad is reset.

        Args:
            user_input: The user's query
            image: Optional image attached to the query

        Returns:
            QueryOutcome of the run

        Raises:
            DiscussionBusyError: If a query or resume is already running
            CredentialsInvalidError: If credentials were rejected earlier
            ValueError: If there is neither text nor an image
        """
        if self._busy:
            raise DiscussionBusyError("A discussion is already running")
        if credentials.invalid:
            self._warn_credentials()
            raise CredentialsInvalidError(credentials.reason or "Credentials are invalid")

        text = (user_input or "").strip()
        if not text and image is None:
            raise ValueError("A query needs text or an image")

        self._clear_checkpoint()
        document = self.notepad.reset()
        self._emit(DiscussionEvent(type=EventType.NOTEPAD_CHANGED, notepad=document))

        self._post(MessageSender.USER, MessagePurpose.USER_INPUT, text, image=image)
        context = DiscussionContext(user_input=text, image=image)

        logger.info(
            "Starting discussion",
            query=text[:50],
            has_image=image is not None,
            mode=self.config.discussion.mode.value,
        )

        async def body(token: CancellationToken) -> None:
            policy = self._policy()
            self._set_phase(DiscussionPhase.INITIAL_TURN)
            parsed = await self._execute_step(Step.initial(), context, token)
            if self._evaluate(policy, Step.initial(), context, parsed):
                await self._final(context, token)
                return
            await self._discuss(context, token, policy)

        return await self._run(body, "query")

    async def resume(self, checkpoint: Optional[FailureCheckpoint] = None) -> QueryOutcome:
        """
        Manually retry the failed step and continue the discussion.

        The stored request is re-sent unchanged. On success the failure notice
        is removed, the checkpoint cleared and the loop re-entered where the
        failed step left it. On another failure the checkpoint is kept and
        re-pointed at a fresh notice.

        Args:
            checkpoint: Checkpoint to resume (defaults to the pending one)

        Raises:
            NoCheckpointError: If nothing is pending or `checkpoint` is stale
            DiscussionBusyError: If a query or resume is already running
            CredentialsInvalidError: If credentials were rejected earlier
        """
        if self._busy:
            raise DiscussionBusyError("A discussion is already running")
        pending = self._checkpoint
        if pending is None:
            raise NoCheckpointError("There is no failed step to retry")
        if checkpoint is not None and checkpoint.errored_message_id != pending.errored_message_id:
            raise NoCheckpointError("Checkpoint is no longer current")
        if credentials.invalid:
            self._warn_credentials()
            raise CredentialsInvalidError(credentials.reason or "Credentials are invalid")

        logger.info("Resuming from checkpoint", step=pending.step.identifier, failures=pending.failures)

        async def body(token: CancellationToken) -> None:
            await self._resume_from(pending, token)

        return await self._run(body, "resume")

    def cancel(self) -> bool:
        """
        Stop the running query or resume at its next suspension point.

        Returns:
            True if something was running
        """
        if self._token is None:
            return False
        self._token.cancel("user")
        return True

    def clear(self) -> None:
        """Reset transcript, notepad and checkpoint; cancels any active run."""
        self.cancel()
        self._generation += 1

        for message in list(self._messages):
            self._remove_message(message.id)
        self._welcome_id = None

        self._clear_checkpoint()
        document = self.notepad.reset()
        self._emit(DiscussionEvent(type=EventType.NOTEPAD_CHANGED, notepad=document))
        self._set_phase(DiscussionPhase.IDLE)

        self._post_welcome()
        logger.info("Discussion cleared")

    def update_settings(
        self,
        mode: Optional[DiscussionMode] = None,
        fixed_turns: Optional[int] = None,
        model: Optional[str] = None,
        thinking_enabled: Optional[bool] = None,
    ) -> None:
        """
        Change discussion settings between queries.

        Raises:
            DiscussionBusyError: While a query or resume is running
        """
        if self._busy:
            raise DiscussionBusyError("Settings cannot change while a discussion is running")

        if mode is not None:
            self.config.discussion.mode = DiscussionMode(mode)
        if fixed_turns is not None:
            self.config.discussion.fixed_turns = clamp_fixed_turns(fixed_turns)
        if model is not None:
            self.config.gemini.model = model
        if thinking_enabled is not None:
            self.config.gemini.thinking_enabled = thinking_enabled

        self._post_welcome()
        logger.info(
            "Settings updated",
            mode=self.config.discussion.mode.value,
            fixed_turns=self.config.discussion.fixed_turns,
            model=self.config.gemini.model,
            thinking_enabled=self.config.gemini.thinking_enabled,
        )

    # ------------------------------------------------------------------
    # Run wrapper
    # ------------------------------------------------------------------

    async def _run(self, body: Callable[[CancellationToken], Awaitable[None]], label: str) -> QueryOutcome:
        """Run `body` under a fresh token and map its ending onto an outcome."""
        self._busy = True
        token = CancellationToken()
        self._token = token
        generation = self._generation
        started = time.time()

        with bind_run(label):
            outcome = await self._run_body(body, token, generation)
            elapsed_ms = int((time.time() - started) * 1000)

            if generation != self._generation:
                # cleared while running
                self._set_phase(DiscussionPhase.IDLE)

            logger.info("Discussion ended", outcome=outcome.value, elapsed_ms=elapsed_ms)

        self._emit(DiscussionEvent(type=EventType.QUERY_FINISHED, outcome=outcome, elapsed_ms=elapsed_ms))
        return outcome

    async def _run_body(
        self,
        body: Callable[[CancellationToken], Awaitable[None]],
        token: CancellationToken,
        generation: int,
    ) -> QueryOutcome:
        try:
            await body(token)
        except DiscussionCancelled:
            outcome = QueryOutcome.CANCELLED
            self._set_phase(DiscussionPhase.CANCELLED)
            # a pending checkpoint keeps its own failure notice
            if generation == self._generation and self._checkpoint is None:
                self._notice("The user stopped the discussion.")
        except StepFailed:
            outcome = QueryOutcome.FAILED
            self._set_phase(DiscussionPhase.FAILED)
        except AuthenticationFailure as e:
            outcome = QueryOutcome.FAILED
            self._set_phase(DiscussionPhase.FAILED)
            logger.error("Discussion aborted, credentials rejected", error=e.message)
            self._warn_credentials()
        else:
            outcome = QueryOutcome.COMPLETED
            self._set_phase(DiscussionPhase.DONE)
        finally:
            self._busy = False
            self._token = None
        return outcome

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _call(
        self,
        step: Step,
        request: CompletionRequest,
        token: CancellationToken,
    ) -> CompletionResult:
        """Send one request through the retry executor."""
        name = self._name(step.persona)
        max_retries = self.executor.policy.max_retries

        def on_retry(attempt: int, failure: CompletionFailure, delay: float) -> None:
            self._notice(
                f"[{name} - {step.identifier}] call failed, retrying "
                f"({attempt}/{max_retries}) in {delay:.1f}s... {failure.message}"
            )

        return await self.executor.execute(
            lambda: self.service.complete(request),
            token,
            label=step.identifier,
            on_retry=on_retry,
        )

    async def _execute_step(
        self,
        step: Step,
        context: DiscussionContext,
        token: CancellationToken,
    ) -> ParsedResponse:
        """
        Build, send and record one step.

        Raises:
            StepFailed: After the retry budget is spent (checkpoint raised)
        """
        token.check()
        request = self._builder().build(step, context, self.notepad.content)
        prior_log = context.snapshot()
        prior_signal = context.prior_signal

        self._notice(self._progress_text(step))
        logger.info("Step started", step=step.identifier)

        try:
            result = await self._call(step, request, token)
        except RetryExhaustedError as e:
            error = e.last_error.message if e.last_error else str(e)
            notice = self._post(
                MessageSender.SYSTEM,
                MessagePurpose.STEP_FAILURE,
                f"[{self._name(step.persona)} - {step.identifier}] failed after {e.attempts} "
                f"attempts: {error}. You can retry manually.",
            )
            checkpoint = FailureCheckpoint(
                step=step,
                request=request,
                prior_log=prior_log,
                prior_signal=prior_signal,
                user_input=context.user_input,
                errored_message_id=notice.id,
                image=context.image,
                last_error=error,
            )
            self._raise_checkpoint(checkpoint)
            raise StepFailed(checkpoint) from e

        return self._record(step, context, result)

    def _record(
        self,
        step: Step,
        context: DiscussionContext,
        result: CompletionResult,
    ) -> ParsedResponse:
        """Parse a successful completion into the transcript, log and notepad."""
        parsed = self.parser.parse(result.text)
        self._post(step.persona, step.purpose, parsed.spoken_text, duration_ms=result.duration_ms)
        context.append(step.persona, parsed.spoken_text)

        if parsed.notepad_update is not None:
            document = self.notepad.replace(parsed.notepad_update, step.persona)
            self._emit(DiscussionEvent(type=EventType.NOTEPAD_CHANGED, notepad=document))

        logger.info(
            "Step succeeded",
            step=step.identifier,
            duration_ms=result.duration_ms,
            notepad_updated=parsed.notepad_update is not None,
            end_signal=parsed.end_signal,
        )
        return parsed

    def _evaluate(
        self,
        policy: TerminationPolicy,
        step: Step,
        context: DiscussionContext,
        parsed: ParsedResponse,
    ) -> bool:
        """
        Apply the termination policy to a finished turn.

        Returns:
            True if the loop should end now
        """
        signal = policy.effective_signal(parsed.end_signal)
        decision = policy.evaluate(context.prior_signal, signal)
        context.prior_signal = signal

        speaker = self._name(step.persona)
        partner = self._name(
            MessageSender.LOGICAL if step.persona == MessageSender.CREATIVE else MessageSender.CREATIVE
        )

        if decision == TerminationDecision.MUTUAL_AGREEMENT:
            self._notice(f"Both AIs ({partner} and {speaker}) agreed to end the discussion.")
            logger.info("Mutual agreement reached", step=step.identifier)
            return True
        if decision == TerminationDecision.AWAIT_PARTNER:
            self._notice(f"{speaker} suggested ending the discussion. Waiting for {partner} to respond.")
        return False

    async def _discuss(
        self,
        context: DiscussionContext,
        token: CancellationToken,
        policy: TerminationPolicy,
        start_turn: int = 0,
        skip_first_half: bool = False,
    ) -> None:
        """Run turn pairs from `start_turn`, then the final synthesis."""
        self._set_phase(DiscussionPhase.DISCUSSING)
        turn = start_turn
        skip = skip_first_half

        while policy.has_pair(turn):
            token.check()

            if not skip:
                step = Step.turn_a(turn)
                parsed = await self._execute_step(step, context, token)
                if self._evaluate(policy, step, context, parsed):
                    break
            skip = False

            if policy.skip_reply(turn):
                break

            token.check()
            step = Step.turn_b(turn)
            parsed = await self._execute_step(step, context, token)
            if self._evaluate(policy, step, context, parsed):
                break

            turn += 1

        await self._final(context, token)

    async def _final(self, context: DiscussionContext, token: CancellationToken) -> None:
        token.check()
        self._set_phase(DiscussionPhase.FINAL_SYNTHESIS)
        await self._execute_step(Step.final(), context, token)

    async def _resume_from(self, checkpoint: FailureCheckpoint, token: CancellationToken) -> None:
        step = checkpoint.step
        name = self._name(step.persona)

        if step.kind == StepKind.INITIAL_TURN:
            self._set_phase(DiscussionPhase.INITIAL_TURN)
        elif step.is_final:
            self._set_phase(DiscussionPhase.FINAL_SYNTHESIS)
        else:
            self._set_phase(DiscussionPhase.DISCUSSING)

        context = DiscussionContext.restore(
            checkpoint.user_input,
            checkpoint.image,
            checkpoint.prior_log,
            checkpoint.prior_signal,
        )
        self._notice(f"[{name} - {step.identifier}] retrying manually...")

        try:
            result = await self._call(step, checkpoint.request, token)
        except RetryExhaustedError as e:
            error = e.last_error.message if e.last_error else str(e)
            self._remove_message(checkpoint.errored_message_id)
            notice = self._post(
                MessageSender.SYSTEM,
                MessagePurpose.STEP_FAILURE,
                f"[{name} - {step.identifier}] manual retry failed: {error}. You can try again.",
            )
            repointed = checkpoint.repoint(notice.id, error)
            self._raise_checkpoint(repointed)
            raise StepFailed(repointed) from e

        parsed = self._record(step, context, result)
        self._remove_message(checkpoint.errored_message_id)
        self._clear_checkpoint()
        self._notice(f"[{name} - {step.identifier}] manual retry succeeded, continuing.")

        if step.is_final:
            return

        policy = self._policy()
        if self._evaluate(policy, step, context, parsed):
            await self._final(context, token)
            return

        turn, skip_first_half = step.resume_point()
        await self._discuss(context, token, policy, turn, skip_first_half)
