"""
Narrative Report Adapter
Turns a session's classified findings into a Markdown audit report via an
OpenAI-compatible chat completion endpoint (OpenRouter by default)
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import httpx
from openai import AsyncOpenAI, OpenAIError

from app.core.config import settings
from app.core.errors import ReportGenerationError
from app.core.progress import Classification, ClassifiedResponse

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are a professional auditor assistant."

REPORT_INSTRUCTIONS = """You are an expert Audit Reporting AI. Based on the following audit findings, generate a professional, detailed audit report.
Use Markdown formatting.

Structure the report as follows:
1. **Executive Summary**: A brief overview of the audit performance.
2. **Key Findings**: Highlight the main non-compliances and warnings.
3. **Detailed Analysis**: Discuss the implications of the findings.
4. **Recommendations**: Actionable steps to address the non-compliances and warnings.
5. **Conclusion**: Final verdict and next steps."""

EMPTY_REPORT_TEXT = "No report generated."


def _format_entry(entry: ClassifiedResponse) -> str:
    line = f"- [{entry.section}] {entry.question_text}: {entry.status}"
    if entry.notes:
        line += f" (Notes: {entry.notes})"
    return line


def build_audit_context(
    template_name: str,
    department: str,
    auditor_name: Optional[str],
    audit_date: Optional[datetime],
    classification: Classification,
) -> str:
    """
    Assemble the findings summary handed to the completion service.

    Groups are emitted critical-first and omitted when empty.
    """
    lines = [
        "Audit Report Context:",
        f"Audit Name: {template_name}",
        f"Department: {department}",
        f"Auditor: {auditor_name or 'Unassigned'}",
        f"Date: {audit_date.date().isoformat() if audit_date else 'Unknown'}",
        "",
        "Findings:",
    ]

    groups: List[Tuple[str, List[ClassifiedResponse]]] = [
        ("Non-Compliances (CRITICAL):", classification.non_compliances),
        ("Warnings (Requires Attention):", classification.warnings),
        ("Compliant Areas:", classification.compliant),
    ]
    for heading, entries in groups:
        if not entries:
            continue
        lines.append("")
        lines.append(heading)
        lines.extend(_format_entry(e) for e in entries)

    return "\n".join(lines)


class ReportAdapter:
    """Adapter for narrative report generation"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_sec: Optional[int] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.LLM_API_KEY
        self.model = model or settings.REPORT_MODEL
        self.base_url = base_url or settings.LLM_BASE_URL
        self.timeout_sec = timeout_sec or settings.REPORT_HTTP_TIMEOUT_SEC

        # Configure client with timeout
        self.client = AsyncOpenAI(
            api_key=self.api_key or "unset",
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout_sec, connect=10.0),
            default_headers={
                # OpenRouter attribution headers; ignored by other providers
                "HTTP-Referer": settings.PUBLIC_APP_URL,
                "X-Title": settings.APP_NAME,
            },
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def generate(self, audit_context: str) -> Tuple[str, Dict[str, Any]]:
        """
        Generate a report for an assembled audit context.

        Returns:
            Tuple of (report_markdown, metadata)

        Raises:
            ReportGenerationError: service not configured or request failed
        """
        if not self.configured:
            raise ReportGenerationError("LLM API key not configured; set LLM_API_KEY")

        prompt = f"{REPORT_INSTRUCTIONS}\n\n{audit_context}"

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
            )
        except (OpenAIError, httpx.HTTPError) as e:
            logger.warning(f"Report generation request failed: {e}")
            raise ReportGenerationError(f"Failed to generate report: {e}") from e

        content = None
        if response.choices:
            content = response.choices[0].message.content
        report = (content or "").strip() or EMPTY_REPORT_TEXT

        metadata = {
            "model": self.model,
            "timestamp": datetime.utcnow().isoformat(),
            "context_chars": len(audit_context),
        }
        return report, metadata


# Singleton instance
report_adapter = ReportAdapter()
