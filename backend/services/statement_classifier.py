"""Statement Classifier - detects recurring subscription charges in statement text.

The input text must already be redacted. This module never logs or stores the
text itself; only its length appears in logs.
"""
import asyncio
import json
import logging
from typing import Awaitable, Callable, Optional

from pydantic import ValidationError

from models import ClassificationErrorCode, ClassificationOutcome, DetailedReport
from utils.llm_chat import json_chat

logger = logging.getLogger(__name__)

MIN_STATEMENT_CHARS = 100
MAX_STATEMENT_CHARS = 100_000
TRUNCATION_MARKER = "\n... [truncated for safety/cost]"

CLASSIFIER_SYSTEM_PROMPT = """You are a strict financial data auditor for international bank and credit card statements.
Output ONLY valid JSON. No explanations, no markdown.

First decide whether the text is a real bank/credit card statement (bank name, dates,
a transaction table with descriptions and amounts, balances).

If it is NOT a statement or has no meaningful transactions, output:
{"error": "Not a valid bank statement: <very brief reason>"}

Otherwise output:
{
  "isBankStatement": true,
  "currencyCode": "USD/EUR/GBP/INR/AED/...",
  "currencySymbol": "$/€/£/₹/...",
  "subscriptions": [
    {
      "name": "Normalized service name (Netflix, Spotify, YouTube Premium, ...)",
      "monthlyAmount": number,
      "totalPaid": number,
      "paidMonths": integer,
      "annualCost": number,
      "lastDate": "YYYY-MM-DD or date string",
      "cancelUrl": "official cancellation URL or null"
    }
  ],
  "totalAnnualWaste": number
}

Rules:
- Detect recurring consumer subscriptions (streaming, software, cloud, news, gym, ...)
- Include a charge if it repeats (same or similar description and amount) or is a single charge from a well-known subscription merchant
- Ignore one-off purchases, transfers, salary, utilities, rent, taxes, groceries, fuel
- Normalize names (e.g. "GOOGLE*YOUTUBE" -> "YouTube Premium")
- annualCost = monthlyAmount x 12 unless the billing period is clearly different
- totalAnnualWaste = sum of annualCost"""

ChatFn = Callable[[str, str], Awaitable[str]]


def _strip_code_fence(content: str) -> str:
    content = content.strip()
    if content.startswith("```"):
        content = content.split("\n", 1)[-1] if "\n" in content else ""
        if content.rstrip().endswith("```"):
            content = content.rstrip()[:-3]
    return content.strip()


def _failure(code: ClassificationErrorCode, message: str) -> ClassificationOutcome:
    return ClassificationOutcome(error_code=code, message=message)


class StatementClassifier:
    def __init__(self, chat: Optional[ChatFn] = None):
        self._chat = chat or json_chat

    async def classify(self, text: str) -> ClassificationOutcome:
        """
        Classify redacted statement text into a DetailedReport.

        Returns an outcome carrying either the result or one of
        TOO_SHORT / SERVICE_UNAVAILABLE / MALFORMED_RESPONSE / NOT_A_STATEMENT.
        """
        text = (text or "").strip()
        if len(text) <= MIN_STATEMENT_CHARS:
            return _failure(
                ClassificationErrorCode.TOO_SHORT,
                f"Statement text is too short (must exceed {MIN_STATEMENT_CHARS} characters)",
            )

        if len(text) > MAX_STATEMENT_CHARS:
            text = text[:MAX_STATEMENT_CHARS] + TRUNCATION_MARKER
        logger.info(f"Sending statement to classifier ({len(text)} chars)")

        try:
            content = await self._chat(CLASSIFIER_SYSTEM_PROMPT, f"Text:\n{text}")
        except asyncio.TimeoutError:
            logger.error("Classifier call timed out")
            return _failure(ClassificationErrorCode.SERVICE_UNAVAILABLE, "AI service timed out")
        except Exception as e:
            logger.error(f"Classifier call failed: {type(e).__name__}")
            return _failure(ClassificationErrorCode.SERVICE_UNAVAILABLE, "AI service unavailable")

        try:
            payload = json.loads(_strip_code_fence(content or ""))
        except (json.JSONDecodeError, TypeError):
            logger.error(f"Classifier returned non-JSON content ({len(content or '')} chars)")
            return _failure(ClassificationErrorCode.MALFORMED_RESPONSE, "Invalid AI response format")

        if not isinstance(payload, dict):
            return _failure(ClassificationErrorCode.MALFORMED_RESPONSE, "Invalid AI response format")

        if payload.get("error"):
            reason = str(payload["error"])
            logger.info("Classifier rejected input as not a statement")
            return _failure(ClassificationErrorCode.NOT_A_STATEMENT, reason)

        try:
            report = DetailedReport.model_validate(payload)
        except ValidationError as e:
            logger.error(f"Classifier response failed validation: {e.error_count()} errors")
            return _failure(ClassificationErrorCode.MALFORMED_RESPONSE, "Invalid AI response format")

        logger.info(f"Classifier detected {len(report.subscriptions)} subscriptions")
        return ClassificationOutcome(result=report)


statement_classifier = StatementClassifier()
