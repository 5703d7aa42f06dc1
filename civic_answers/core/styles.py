"""
civic_answers/core/styles.py

Question style: how the resident is asking, used to set the tone line of the
generation prompt and to flag follow-up questions for the caller.

STYLE_RULES is ordered and the first match wins; no match -> CASUAL. Urgent
comes first so "hi, there is an emergency" is never treated as small talk.
is_follow_up is set from the follow-up markers whatever style wins, so
"how do I pay my water bill too?" is technical and a follow-up.

Deterministic: no random starters; the same question always yields the same
style and the same prompt.
"""

from __future__ import annotations
import re
from dataclasses import dataclass
from typing import Pattern, Tuple

# "and" is left out: nearly every compound question would count as a follow-up
FOLLOW_UP_PATTERN = re.compile(
    r"\b(also|plus|more|again|additionally|too|además|também)\b|أيضاً|أيضا",
    re.I,
)


@dataclass(frozen=True)
class StyleRule:
    name: str
    pattern: Pattern[str]
    tone: str

    def matches(self, question: str) -> bool:
        return bool(self.pattern.search(question or ""))


@dataclass(frozen=True)
class QuestionStyle:
    name: str
    tone: str
    is_follow_up: bool = False

    def prompt_line(self) -> str:
        return f"Tone: {self.tone}."


STYLE_RULES: Tuple[StyleRule, ...] = (
    StyleRule(
        "urgent",
        re.compile(r"\b(urgent|emergency|urgente|emergencia|asap|immediately|right away)\b", re.I),
        "the resident needs help quickly; be direct and lead with the fastest way to get it",
    ),
    StyleRule(
        "greeting",
        re.compile(r"\b(hi|hello|hey|hola|what's up|how are you)\b|مرحبا|أهلا", re.I),
        "warm and welcoming; greet the resident briefly, then offer help with city services",
    ),
    StyleRule(
        "confused",
        re.compile(r"\b(confused|don't understand|do not understand|confuso|confundido|no entiendo|unclear)\b", re.I),
        "patient and reassuring; explain one step at a time in plain words",
    ),
    StyleRule(
        "gratitude",
        re.compile(r"\b(thank|thanks|gracias|appreciate)\b|شكرا", re.I),
        "warm and appreciative; acknowledge the thanks and offer further help",
    ),
    StyleRule(
        "technical",
        re.compile(r"\b(how|what|why|when|where|which|c[oó]mo|qu[eé]|d[oó]nde|cu[aá]ndo|por qu[eé])\b", re.I),
        "thorough and precise; give concrete steps in order",
    ),
    StyleRule(
        "follow_up",
        FOLLOW_UP_PATTERN,
        "engaged; build on the earlier answer and add only what is new",
    ),
    StyleRule(
        "celebration",
        re.compile(r"\b(perfect|great job|nailed it|awesome|fantastic|love this)\b", re.I),
        "encouraging; share the resident's good news, then add anything useful",
    ),
    StyleRule(
        "playful",
        re.compile(r"\b(fun|excited|interesting|cool)\b", re.I),
        "energetic and friendly while staying useful",
    ),
)

CASUAL = QuestionStyle("casual", "relaxed and friendly")


def is_follow_up(question: str) -> bool:
    return bool(FOLLOW_UP_PATTERN.search(question or ""))


def classify_style(question: str) -> QuestionStyle:
    follow_up = is_follow_up(question)
    for rule in STYLE_RULES:
        if rule.matches(question):
            return QuestionStyle(rule.name, rule.tone, follow_up)
    return QuestionStyle(CASUAL.name, CASUAL.tone, follow_up)
