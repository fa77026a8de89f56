"""Natural-language shop status report.

The report is produced by the Gemini ``generateContent`` REST endpoint. It is
advisory only: missing configuration or any request failure yields a fixed
fallback message, and no metric in :mod:`printflow.analytics` depends on it.
"""

from __future__ import annotations

import json
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Sequence

import requests

from . import log
from .analytics import compute_completed_today
from .constants import JobStage
from .data_manager import Job


API_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
REQUEST_TIMEOUT_SECONDS = 30

MISSING_CONFIG_MESSAGE = (
    "AI Configuration Missing. Please set up the API Key in your environment "
    "to use this feature."
)
REQUEST_FAILED_MESSAGE = "Unable to generate AI report at this time. Please try again later."
EMPTY_RESPONSE_MESSAGE = "No insights generated."

PROMPT_TEMPLATE = """
You are a clever shop manager assistant for a printing shop.
Analyze the following job data and provide a concise status report.

Data Summary:
- Active Jobs: {active_jobs}
- Completed Today Count: {completed_today}

Please provide:
1. A quick summary of the shop floor status (who is overloaded?).
2. Identify any bottlenecks (e.g., too many jobs in Design or Finishing).
3. Suggest which 2 jobs should be prioritized immediately.
4. A motivational quote for the team.

Keep the tone professional but encouraging. Limit to 200 words.
"""


def summarize_active_jobs(jobs: Sequence[Job]) -> List[Dict[str, str]]:
    """Reduce unfinished jobs to the fields the report needs."""

    return [
        {
            "id": job.id,
            "stage": job.current_stage.value,
            "assignee": job.assigned_to,
            "priority": job.priority.value,
        }
        for job in jobs
        if job.current_stage is not JobStage.COMPLETED
    ]


def build_prompt(jobs: Sequence[Job], *, now: int) -> str:
    return PROMPT_TEMPLATE.format(
        active_jobs=json.dumps(summarize_active_jobs(jobs)),
        completed_today=compute_completed_today(jobs, now),
    )


def _extract_text(payload: Dict[str, Any]) -> str:
    try:
        parts = payload["candidates"][0]["content"]["parts"]
    except (KeyError, IndexError, TypeError):
        return ""
    return "".join(part.get("text", "") for part in parts if isinstance(part, dict))


class ShopReportClient:
    """Thin HTTP client that turns a job snapshot into a status report."""

    def __init__(
        self,
        api_key: str,
        *,
        model: str,
        session: Optional[requests.Session] = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ):
        self.api_key = api_key
        self.model = model
        self.session = session or requests.Session()
        self.timeout = timeout

    def generate(self, jobs: Sequence[Job], *, now: int) -> str:
        """Return the report text, or a fallback message on any failure."""

        if not self.api_key:
            log.warning("AI API key not configured; AI report disabled")
            return MISSING_CONFIG_MESSAGE

        body = {"contents": [{"parts": [{"text": build_prompt(jobs, now=now)}]}]}
        try:
            response = self.session.post(
                API_URL.format(model=self.model),
                params={"key": self.api_key},
                json=body,
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as exc:
            log.error("AI report request failed: %s", exc)
            return REQUEST_FAILED_MESSAGE

        return _extract_text(payload) or EMPTY_RESPONSE_MESSAGE

    def submit(self, executor: ThreadPoolExecutor, jobs: Sequence[Job], *, now: int) -> "Future[str]":
        """Schedule :meth:`generate` on ``executor`` without waiting for it."""

        snapshot = list(jobs)
        return executor.submit(self.generate, snapshot, now=now)
