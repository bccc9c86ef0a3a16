"""
PMD-Gemini Service - AI Fix Advisor

Relays one PMD violation plus the offending Apex snippet to Gemini (through
LiteLLM) and returns the model's suggested fix verbatim.

A single FixAdvisor is built at startup from configuration and shared
read-only by every request. When no GEMINI_API_KEY is configured no advisor
is built and /fix answers 503.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

import litellm
from loguru import logger

from .config import ServiceConfig
from .errors import UpstreamFailure
from .schemas import FixResponse

ProviderCall = Callable[[List[Dict[str, str]]], Awaitable[Any]]

GENERIC_FAILURE_MESSAGE = "Failed to generate AI suggestion"

FIX_SYSTEM_PROMPT = """You are an expert Salesforce Apex developer.

Your task is to fix Apex code so that it no longer triggers a given PMD violation.

REQUIREMENTS:
1. Provide the corrected code snippet
2. Explain what was wrong and why the fix works
3. Keep the solution concise and focused
4. Maintain the original functionality
5. Follow Salesforce best practices

FORMAT YOUR RESPONSE AS:
**Fixed Code:**
```apex
[corrected code here]
```

**Explanation:**
[Brief explanation of the fix]

**Why This Fix Works:**
[Why this resolves the PMD violation]"""


def build_fix_messages(prompt: str, code: str) -> List[Dict[str, str]]:
    # Stable instructions in system, request-specific content in user.
    user = (
        f'TASK: Fix the following Apex code to resolve this PMD violation: "{prompt}"\n\n'
        f"CODE TO FIX:\n```apex\n{code}\n```"
    )
    return [
        {"role": "system", "content": FIX_SYSTEM_PROMPT},
        {"role": "user", "content": user},
    ]


def classify_upstream_error(error: BaseException) -> str:
    """Map an upstream exception to a caller-facing message."""
    if isinstance(error, asyncio.TimeoutError):
        return "Gemini API request timed out"

    text = str(error)
    if "API_KEY" in text:
        return "Invalid Gemini API key"
    if "quota" in text.lower():
        return "Gemini API quota exceeded"
    if "safety" in text.lower():
        return "Content blocked by safety filters"
    return GENERIC_FAILURE_MESSAGE


def extract_content(resp: Any) -> str:
    """Pull the reply text out of a LiteLLM ModelResponse or a plain dict."""
    try:
        content = resp["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        try:
            content = resp.choices[0].message.content
        except (AttributeError, IndexError, TypeError):
            return ""
    return content or ""


class FixAdvisor:
    """Read-only handle to the hosted model."""

    def __init__(
        self,
        *,
        model: str,
        api_key: Optional[str] = None,
        timeout_seconds: float = 45.0,
        provider_call: Optional[ProviderCall] = None,
    ):
        self.model = model
        self.timeout_seconds = timeout_seconds
        self._api_key = api_key
        self._provider_call = provider_call

    @property
    def model_name(self) -> str:
        """Model id without the LiteLLM provider prefix."""
        return self.model.split("/", 1)[-1]

    async def _complete(self, messages: List[Dict[str, str]]) -> Any:
        if self._provider_call is not None:
            return await self._provider_call(messages)
        return await litellm.acompletion(
            model=self.model,
            messages=messages,
            api_key=self._api_key,
            temperature=0.2,
        )

    async def suggest_fix(self, prompt: str, code: str) -> FixResponse:
        messages = build_fix_messages(prompt, code)
        logger.info(f"Calling {self.model} for fix suggestion ({len(code)} chars of code)...")
        start = time.time()

        try:
            resp = await asyncio.wait_for(self._complete(messages), timeout=self.timeout_seconds)
        except Exception as e:
            message = classify_upstream_error(e)
            logger.error(f"AI suggestion error: {message}: {e}")
            raise UpstreamFailure(message, str(e) or type(e).__name__) from e

        suggestion = extract_content(resp)
        if not suggestion.strip():
            logger.error(f"{self.model} returned an empty suggestion")
            raise UpstreamFailure(GENERIC_FAILURE_MESSAGE, "Model returned an empty response")

        latency_ms = int((time.time() - start) * 1000)
        logger.info(f"AI suggestion generated successfully in {latency_ms}ms")
        return FixResponse(patch=suggestion, model=self.model_name)


def build_fix_advisor(config: ServiceConfig) -> Optional[FixAdvisor]:
    """Build the process-wide advisor once; None disables /fix."""
    if not config.gemini_enabled:
        logger.warning("Gemini API key not found - AI suggestions will be disabled")
        return None

    advisor = FixAdvisor(
        model=config.gemini_model,
        api_key=config.gemini_api_key,
        timeout_seconds=config.gemini_timeout_seconds,
    )
    logger.info(f"Gemini AI initialized successfully (model={config.gemini_model})")
    return advisor
