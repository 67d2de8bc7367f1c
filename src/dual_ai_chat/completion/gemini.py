"""
Gemini completion service.

Wraps the google-genai client behind the CompletionService contract. Failures
are returned as error text, never raised: retry and classification belong to
the RetryExecutor.
"""

import asyncio
import base64
import os
import time
from typing import Optional, List, Any

from google import genai
from google.genai import types

from dual_ai_chat.completion.base import CompletionRequest, CompletionResult
from dual_ai_chat.logging import get_logger

logger = get_logger(__name__)


MISSING_KEY_ERROR = "API key not valid: no Gemini API key configured"


class GeminiCompletionService:
    """
    Gemini API client used by both personas.

    The personas differ only in their system instruction, which travels with
    each request in its GenerateContentConfig.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_key_env: str = "GEMINI_API_KEY",
        timeout_seconds: int = 120,
        temperature: Optional[float] = None,
    ):
        """
        Initialize the Gemini client.

        Args:
            api_key: Gemini API key (defaults to the `api_key_env` variable)
            api_key_env: Environment variable holding the key
            timeout_seconds: Request timeout
            temperature: Sampling temperature, model default when None
        """
        self.api_key = api_key or os.environ.get(api_key_env)
        self.timeout_seconds = timeout_seconds
        self.temperature = temperature
        self._client: Optional[genai.Client] = None

        logger.info(
            "GeminiCompletionService initialized",
            timeout=timeout_seconds,
            has_api_key=bool(self.api_key),
        )

    @staticmethod
    def _is_gemma_model(model: str) -> bool:
        """Gemma models support neither system instructions nor thinking."""
        return "gemma" in model.lower()

    def _get_client(self) -> genai.Client:
        if self._client is None:
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    def _build_config(self, request: CompletionRequest) -> types.GenerateContentConfig:
        """Per-call generation config: persona preamble, temperature, thinking budget."""
        gemma = self._is_gemma_model(request.model)
        options: dict = {}

        if request.system_instruction and not gemma:
            options["system_instruction"] = request.system_instruction
        if self.temperature is not None:
            options["temperature"] = self.temperature
        if request.thinking_budget is not None:
            if gemma:
                logger.debug("Thinking budget skipped for Gemma", model=request.model)
            else:
                options["thinking_config"] = types.ThinkingConfig(
                    thinking_budget=request.thinking_budget,
                )

        return types.GenerateContentConfig(**options)

    def _build_contents(self, request: CompletionRequest) -> List[Any]:
        """Prompt text plus the optional inline image."""
        prompt = request.prompt
        if request.system_instruction and self._is_gemma_model(request.model):
            prompt = f"{request.system_instruction}\n\n---\n\n{prompt}"

        contents: List[Any] = [prompt]
        if request.image is not None:
            contents.append(types.Part.from_bytes(
                data=base64.b64decode(request.image.data),
                mime_type=request.image.mime_type,
            ))
        return contents

    async def complete(self, request: CompletionRequest) -> CompletionResult:
        """
        Run one completion.

        Args:
            request: Prompt, model, persona preamble and thinking budget

        Returns:
            CompletionResult; `error` carries the failure text when the call failed
        """
        start = time.time()

        if not self.api_key:
            logger.error("Gemini API key not set")
            return CompletionResult(text="", error=MISSING_KEY_ERROR)

        try:
            client = self._get_client()
            config = self._build_config(request)
            contents = self._build_contents(request)

            # Run in executor to avoid blocking
            loop = asyncio.get_running_loop()
            response = await asyncio.wait_for(
                loop.run_in_executor(
                    None,
                    lambda: client.models.generate_content(
                        model=request.model,
                        contents=contents,
                        config=config,
                    ),
                ),
                timeout=self.timeout_seconds,
            )
            text = response.text
        except asyncio.TimeoutError:
            logger.warning("Gemini call timed out", model=request.model, timeout=self.timeout_seconds)
            return CompletionResult(
                text="",
                error=f"Timeout after {self.timeout_seconds}s",
                duration_ms=int((time.time() - start) * 1000),
            )
        except Exception as e:
            logger.warning("Gemini call failed", model=request.model, error=str(e))
            return CompletionResult(
                text="",
                error=str(e) or type(e).__name__,
                duration_ms=int((time.time() - start) * 1000),
            )

        duration_ms = int((time.time() - start) * 1000)
        logger.info(
            "Gemini call complete",
            model=request.model,
            duration_ms=duration_ms,
            thinking_budget=request.thinking_budget,
        )
        return CompletionResult(text=text or "", duration_ms=duration_ms)
