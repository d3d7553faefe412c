"""
LLM chat using Google Generative AI (Gemini).
Uses GEMINI_API_KEY (or LLM_API_KEY) from environment.
Responses are requested as JSON; callers parse and validate them.
"""
import asyncio
import logging
import os
from typing import Optional

logger = logging.getLogger(__name__)

LLM_API_KEY = os.environ.get("GEMINI_API_KEY") or os.environ.get("LLM_API_KEY")
LLM_MODEL = os.environ.get("LLM_MODEL", "gemini-2.5-flash")
LLM_TIMEOUT_SECONDS = float(os.environ.get("LLM_TIMEOUT_SECONDS", "60"))


def _get_api_key() -> Optional[str]:
    return LLM_API_KEY


def _sync_json_chat(system_prompt: str, user_text: str, model: str = LLM_MODEL) -> str:
    """Synchronous JSON-mode completion using Google Generative AI."""
    import google.generativeai as genai
    api_key = _get_api_key()
    if not api_key:
        raise ValueError("GEMINI_API_KEY not found in environment")
    genai.configure(api_key=api_key)
    gemini = genai.GenerativeModel(
        model or LLM_MODEL,
        system_instruction=system_prompt,
        generation_config={
            "temperature": 0,
            "response_mime_type": "application/json",
        },
    )
    response = gemini.generate_content(user_text)
    if not response or not response.text:
        raise ValueError("Empty response from LLM")
    return response.text


async def json_chat(
    system_prompt: str,
    user_text: str,
    model: str = LLM_MODEL,
    timeout: float = LLM_TIMEOUT_SECONDS,
) -> str:
    """Async JSON chat completion. Runs sync SDK in thread pool, bounded by timeout."""
    loop = asyncio.get_running_loop()
    return await asyncio.wait_for(
        loop.run_in_executor(
            None,
            lambda: _sync_json_chat(system_prompt, user_text, model),
        ),
        timeout=timeout,
    )
