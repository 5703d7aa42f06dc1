"""
civic_answers/core/fallbacks.py

Canned answers used when the text-generation provider is unavailable.

Two tiers, checked in this order:
1. DOMAIN_PATTERN: does the question look like a city-services question at all?
   If not -> OFF_TOPIC (we do not guess at unrelated questions).
2. TOPIC_RULES: ordered (name, pattern, response) entries; first match wins.
   Infrastructure comes before utilities, so "water pooling in a pothole" is a
   road report, not a billing question.
   No topic match -> SERVICE_DESK.

Responses are English (pivot language); the orchestrator translates them back.
"""

from __future__ import annotations
import re
from dataclasses import dataclass
from typing import Optional, Pattern, Tuple

from civic_answers.core import config


@dataclass(frozen=True)
class FallbackRule:
    name: str
    pattern: Optional[Pattern[str]]
    response: str

    def matches(self, question: str) -> bool:
        return self.pattern is not None and bool(self.pattern.search(question or ""))

    def render(self, phone: Optional[str] = None) -> str:
        return self.response.format(phone=phone or config.SERVICE_DESK_PHONE)


DOMAIN_PATTERN = re.compile(
    r"\b("
    r"city|cities|municipal|county|311|211|service|services|report|reporting|request|permit|permits|"
    r"pothole|potholes|road|roads|street|streets|sidewalk|streetlight|streetlights|traffic|"
    r"water|sewer|utility|utilities|bill|bills|billing|"
    r"trash|garbage|recycling|recycle|waste|bulk|pickup|collection|"
    r"parking|ticket|tickets|tow|towed|"
    r"rent|housing|food|shelter|assistance|"
    r"calle|bache|baches|basura|agua|estacionamiento|ciudad|servicio|servicios|reportar|ayuda"
    r")\b",
    re.I,
)

TOPIC_RULES: Tuple[FallbackRule, ...] = (
    FallbackRule(
        "pothole",
        re.compile(r"\b(pothole|potholes|road|roads|street damage|crater|sidewalk|bache|baches)\b", re.I),
        "To report a pothole, call {phone} for the fastest response, or use the city's online service request form. "
        "Give the exact location and a short description of the damage. "
        "Most potholes are repaired within 3-5 business days.",
    ),
    FallbackRule(
        "streetlight",
        re.compile(r"\b(streetlight|streetlights|street light|street lights|lighting|lamp post)\b", re.I),
        "To report a broken streetlight, call {phone} or submit an online service request with the nearest address or pole number. "
        "Outages are usually repaired within 24-48 hours.",
    ),
    FallbackRule(
        "water",
        re.compile(r"\b(water|sewer|utility|utilities|bill|bills|billing|leak|agua)\b", re.I),
        "For water and utility bills, setting up auto-pay online prevents late fees and online payments process immediately. "
        "For leaks or billing questions, call {phone} or visit City Hall for in-person help.",
    ),
    FallbackRule(
        "garbage",
        re.compile(r"\b(trash|garbage|recycling|recycle|waste|bulk|pickup|collection|basura)\b", re.I),
        "Check your collection day on the city website, which always has the current schedule. "
        "Place bins 3 feet apart and 2 feet from the curb by 6 AM on collection day. "
        "For missed pickups, call {phone}.",
    ),
    FallbackRule(
        "parking",
        re.compile(r"\b(parking|permit|permits|ticket|tickets|tow|towed|estacionamiento)\b", re.I),
        "Parking permits are fastest in person at Public Works with your ID and vehicle registration, usually the same day. "
        "For parking tickets or towed vehicles, call {phone} for guidance.",
    ),
    FallbackRule(
        "community",
        re.compile(r"\b(rent|housing|food|shelter|assistance|211)\b", re.I),
        "For community services such as rent, housing, food or utility assistance, call 211. "
        "The 211 helpline is open 24/7 and connects you directly with local resources.",
    ),
)

SERVICE_DESK = FallbackRule(
    "service_desk",
    None,
    "I can't reach my answer service right now, but the city service desk can help. "
    "Please call {phone} or submit a request through the city's online service portal.",
)

OFF_TOPIC = FallbackRule(
    "off_topic",
    None,
    "I'm here to help with city services like reporting potholes, trash pickup, water bills and parking. "
    "Could you tell me which city service you need help with?",
)


def is_domain_relevant(question: str) -> bool:
    return bool(DOMAIN_PATTERN.search(question or ""))


def select_fallback(question: str) -> FallbackRule:
    if not is_domain_relevant(question):
        return OFF_TOPIC
    for rule in TOPIC_RULES:
        if rule.matches(question):
            return rule
    return SERVICE_DESK
