from __future__ import annotations

from dataclasses import dataclass, field

from agentrun.agents.base import PromptedAgent
from agentrun.extraction import extract_json
from agentrun.models import SEVERITIES, Severity


@dataclass(slots=True)
class CriticVerdict:
    contradictions: list[str] = field(default_factory=list)
    severity: Severity = "low"


class CriticAgent(PromptedAgent):
    role = "critic"
    prompt_file = "critic.md"
    fallback_prompt = """
You are a Fact-Check Critic. Find contradictions between agent steps and answer with JSON
{"contradictions": [...], "severity": "low|medium|high"}.
""".strip()

    @staticmethod
    def parse_verdict(content: str) -> CriticVerdict:
        parsed = extract_json(content) or {}
        raw = parsed.get("contradictions")
        contradictions = [str(item) for item in raw] if isinstance(raw, list) else []
        severity = parsed.get("severity")
        return CriticVerdict(
            contradictions=contradictions,
            severity=severity if severity in SEVERITIES else "low",
        )

    async def review(self, steps_summary: str) -> CriticVerdict:
        response = await self.ask(
            f"Analyze these agent steps for contradictions:\n\n{steps_summary}\n\n"
            "Respond with JSON only."
        )
        return self.parse_verdict(response.text)
