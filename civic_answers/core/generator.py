#!/usr/bin/env python3
"""
civic_answers/core/generator.py

Answer generation for a pivot-language question plus its ranked matches.

Exposes:
  - build_prompt(question, matches, max_titles, style) -> str
  - postprocess(raw) -> str
  - AnswerGenerator.generate(question, matches, deadline, style) -> GeneratedAnswer

Behavior invariants:
- Only the titles of the top GEN_CONTEXT_TITLES matches go into the prompt (not bodies),
  which keeps prompts small and fast.
- The question style (urgent, greeting, ...) adds one deterministic tone line.
- One provider attempt with a short timeout and a token cap.
- Output: first non-empty line only, always ending in terminal punctuation.
- Provider failure or an empty reply selects a canned answer from the fallback table.
"""
from __future__ import annotations
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence

from civic_answers.core import config
from civic_answers.core.deadline import Deadline, clip_timeout
from civic_answers.core.errors import ProviderUnavailable
from civic_answers.core.fallbacks import select_fallback
from civic_answers.core.logs import make_jlog
from civic_answers.core.models import RankedMatch
from civic_answers.core.styles import QuestionStyle, classify_style

jlog = make_jlog("core.generator")

SOURCE_PROVIDER = "provider"

PERSONA = (
    "You are Beale, a friendly city services assistant. You are warm, clear and genuinely helpful, "
    "and you focus on getting residents to the right city service quickly."
)

GUIDELINES = (
    "Guidelines:\n"
    "- Answer in English, in a single short paragraph (40-80 words).\n"
    "- Give specific, actionable next steps (who to call, where to go, what to bring).\n"
    "- Do not invent phone numbers, addresses or fees that are not commonly known.\n"
    "- Stay friendly but professional."
)

TERMINAL_PUNCTUATION = (".", "!", "?")


@dataclass(frozen=True)
class GeneratedAnswer:
    text: str
    source: str
    style: Optional[QuestionStyle] = None

    @property
    def from_fallback(self) -> bool:
        return self.source != SOURCE_PROVIDER


def build_prompt(question: str, matches: Sequence[RankedMatch], max_titles: int = 2, style: Optional[QuestionStyle] = None) -> str:
    titles = [m.item.title for m in list(matches)[:max_titles] if m.item.title]
    parts: List[str] = [PERSONA, "", f"Question: \"{question.strip()}\""]
    if style is not None:
        parts.append(style.prompt_line())
    if titles:
        parts.append(f"Relevant information: {', '.join(titles)}")
    parts.extend(["", GUIDELINES])
    return "\n".join(parts)


def postprocess(raw: Optional[str]) -> str:
    lines = [ln.strip() for ln in (raw or "").splitlines() if ln.strip()]
    if not lines:
        return ""
    answer = lines[0]
    if not answer.endswith(TERMINAL_PUNCTUATION):
        answer += "."
    return answer


class AnswerGenerator:
    def __init__(
        self,
        provider,
        timeout_sec: Optional[float] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
        max_titles: Optional[int] = None,
    ):
        self.provider = provider
        self.timeout_sec = config.GEN_TIMEOUT_SEC if timeout_sec is None else float(timeout_sec)
        self.max_tokens = max_tokens or config.GEN_MAX_TOKENS
        self.temperature = config.GEN_TEMPERATURE if temperature is None else float(temperature)
        self.top_p = config.GEN_TOP_P if top_p is None else float(top_p)
        self.max_titles = config.GEN_CONTEXT_TITLES if max_titles is None else int(max_titles)

    def fallback(self, question: str, style: Optional[QuestionStyle] = None) -> GeneratedAnswer:
        rule = select_fallback(question)
        jlog({"level": "WARN", "event": "generate_fallback", "rule": rule.name})
        return GeneratedAnswer(rule.render(), f"fallback:{rule.name}", style)

    def generate(
        self,
        question: str,
        matches: Sequence[RankedMatch],
        deadline: Optional[Deadline] = None,
        style: Optional[QuestionStyle] = None,
    ) -> GeneratedAnswer:
        timeout = clip_timeout(deadline, "generate", self.timeout_sec)
        style = style or classify_style(question)
        prompt = build_prompt(question, matches, self.max_titles, style)
        t0 = time.time()
        jlog({"event": "generate_start", "match_count": len(matches), "style": style.name, "prompt_len": len(prompt)})
        try:
            raw = self.provider.complete(
                prompt,
                timeout=timeout,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                top_p=self.top_p,
            )
        except ProviderUnavailable as e:
            jlog({"level": "ERROR", "event": "generate_provider_failed", "detail": str(e)})
            return self.fallback(question, style)

        answer = postprocess(raw)
        if not answer:
            jlog({"level": "WARN", "event": "generate_empty_reply"})
            return self.fallback(question, style)

        jlog({"event": "generate_complete", "ms": int((time.time() - t0) * 1000), "answer_len": len(answer)})
        return GeneratedAnswer(answer, SOURCE_PROVIDER, style)
