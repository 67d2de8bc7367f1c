"""
Prompt construction for each discussion step.

Every request carries the user's query, an image note when one is attached,
the notepad with its update instructions and, in AI-driven mode, the
instruction for signalling completion. Loop turns also carry the full
discussion log and the partner's last words; the final synthesis carries the
log and asks for an answer addressed to the user.
"""

from typing import Optional, Dict

from dual_ai_chat.checkpoint import Step, StepKind
from dual_ai_chat.completion.base import CompletionRequest
from dual_ai_chat.config import DiscussionMode, PromptConfig
from dual_ai_chat.state import DiscussionContext, MessageSender


IMAGE_NOTE = "(The user also attached an image. Take it into account in your analysis.)"


class PromptBuilder:
    """Builds the CompletionRequest for one step."""

    def __init__(
        self,
        prompts: PromptConfig,
        mode: DiscussionMode,
        model: str,
        thinking_budget: Optional[int] = None,
    ):
        self.prompts = prompts
        self.mode = mode
        self.model = model
        self.thinking_budget = thinking_budget

    @property
    def names(self) -> Dict[MessageSender, str]:
        """Display name per persona."""
        return {
            MessageSender.LOGICAL: self.prompts.logical_name,
            MessageSender.CREATIVE: self.prompts.creative_name,
            MessageSender.USER: "User",
        }

    def system_instruction(self, persona: MessageSender) -> str:
        if persona == MessageSender.CREATIVE:
            return self.prompts.creative_system_prompt
        return self.prompts.logical_system_prompt

    def build(
        self,
        step: Step,
        context: DiscussionContext,
        notepad_content: str,
    ) -> CompletionRequest:
        """
        Build the outbound request for `step`.

        Args:
            step: Step about to run
            context: Query in flight (log, last turn, prior signal)
            notepad_content: Current notepad text

        Returns:
            CompletionRequest ready for the RetryExecutor
        """
        if step.kind == StepKind.INITIAL_TURN:
            body = self._initial_body(context)
        elif step.kind == StepKind.FINAL_SYNTHESIS:
            body = self._final_body(context)
        else:
            body = self._reply_body(step.persona, context)

        prompt = f"{body}\n{self._common_instructions(notepad_content)}"
        if not step.is_final:
            nudge = self._completion_nudge(step.persona, context.prior_signal)
            if nudge:
                prompt = f"{prompt}\n{nudge}"

        return CompletionRequest(
            prompt=prompt,
            model=self.model,
            system_instruction=self.system_instruction(step.persona),
            image=context.image,
            thinking_budget=self.thinking_budget,
        )

    def _query_line(self, context: DiscussionContext, original: bool = False) -> str:
        label = "The user's original query is" if original else "The user's query is"
        line = f'{label}: "{context.user_input}".'
        if context.image is not None:
            line = f"{line} {IMAGE_NOTE}"
        return line

    def _initial_body(self, context: DiscussionContext) -> str:
        creative = self.prompts.creative_name
        return (
            f"{self._query_line(context)} Give your initial thoughts or analysis of this "
            f"query so that {creative} (the creative AI) can respond and start the "
            f"discussion with you."
        )

    def _reply_body(self, persona: MessageSender, context: DiscussionContext) -> str:
        partner = MessageSender.LOGICAL if persona == MessageSender.CREATIVE else MessageSender.CREATIVE
        partner_name = self.names[partner]
        partner_role = "the logical AI" if partner == MessageSender.LOGICAL else "the creative AI"
        return (
            f"{self._query_line(context)}\n"
            f"Current discussion:\n{context.render_log(self.names)}\n"
            f'{partner_name} ({partner_role}) just said: "{context.last_text}"\n'
            f"Reply to {partner_name} and continue the discussion. Keep your reply concise."
        )

    def _final_body(self, context: DiscussionContext) -> str:
        logical = self.prompts.logical_name
        creative = self.prompts.creative_name
        return (
            f"{self._query_line(context, original=True)}\n"
            f"You ({logical}) and {creative} had the following discussion:\n"
            f"{context.render_log(self.names)}\n"
            f"Based on the whole exchange and the final state of the shared notepad, "
            f"synthesize the key points into a comprehensive, helpful final answer for the "
            f"user. Address the user directly, not {creative}. Keep the answer well "
            f"structured and easy to follow. You may refer to the notepad, and you may "
            f"update it one last time using the usual notepad instructions."
        )

    def _common_instructions(self, notepad_content: str) -> str:
        p = self.prompts
        text = (
            p.notepad_instructions
            .replace("{notepad_content}", notepad_content)
            .replace("{start_marker}", p.notepad_start_marker)
            .replace("{end_marker}", p.notepad_end_marker)
        )
        if self.mode == DiscussionMode.AI_DRIVEN:
            text += (
                p.completion_instructions
                .replace("{logical_name}", p.logical_name)
                .replace("{completion_marker}", p.completion_marker)
            )
        return text

    def _completion_nudge(self, persona: MessageSender, prior_signal: bool) -> Optional[str]:
        """Ask the responder to agree when the partner already signalled the end."""
        if self.mode != DiscussionMode.AI_DRIVEN or not prior_signal:
            return None
        partner = MessageSender.LOGICAL if persona == MessageSender.CREATIVE else MessageSender.CREATIVE
        marker = self.prompts.completion_marker
        return (
            f"{self.names[partner]} included {marker} to suggest ending the discussion. "
            f"If you agree, also include {marker} in your reply. Otherwise, keep discussing."
        )
