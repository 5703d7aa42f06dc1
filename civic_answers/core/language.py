"""
civic_answers/core/language.py

Language detection and provider-backed translation around an English pivot.

Supported set: en, es, ar. Anything else is handled as English.

Translation fails soft: on provider failure the original text comes back tagged
PASSTHROUGH, so downstream stages must tolerate source-language text and the
orchestrator can flag the answer as possibly being in the wrong language.
"""

from __future__ import annotations
import re
import time
from typing import Dict, Optional

from langdetect import DetectorFactory, detect
from langdetect.lang_detect_exception import LangDetectException

from civic_answers.core import config
from civic_answers.core.deadline import Deadline, clip_timeout
from civic_answers.core.errors import ProviderUnavailable
from civic_answers.core.logs import make_jlog
from civic_answers.core.models import Translation, TranslationStatus

jlog = make_jlog("core.language")

# langdetect is randomized unless seeded
DetectorFactory.seed = 0

DEFAULT_LANGUAGE = "en"

LANGUAGES: Dict[str, Dict[str, str]] = {
    "en": {
        "name": "English",
        "timeout": "Request timed out. Please try again in a moment.",
        "error": "Sorry, I'm having some technical hiccups right now.",
        "service_reminder": "For immediate assistance, you can call {phone}.",
    },
    "es": {
        "name": "Spanish",
        "timeout": "La solicitud tardó demasiado. Por favor, inténtalo de nuevo en un momento.",
        "error": "Lo siento, estoy teniendo problemas técnicos en este momento.",
        "service_reminder": "Para asistencia inmediata, puedes llamar al {phone}.",
    },
    "ar": {
        "name": "Arabic",
        "timeout": "انتهت مهلة الطلب. يرجى المحاولة مرة أخرى بعد قليل.",
        "error": "عذراً، أواجه بعض المشاكل التقنية الآن.",
        "service_reminder": "للحصول على مساعدة فورية، يمكنك الاتصال بـ {phone}.",
    },
}

ARABIC_SCRIPT_RE = re.compile("[\u0600-\u06FF]")
SPANISH_MARKERS_RE = re.compile(
    r"[¿¡ñ]|\b(cómo|como puedo|qué|dónde|cuándo|por qué|necesito|ayuda|reportar|hola|gracias|basura|calle)\b",
    re.I,
)


def is_supported(code: Optional[str]) -> bool:
    return bool(code) and code in LANGUAGES


def language_name(code: str) -> str:
    return LANGUAGES.get(code, LANGUAGES[DEFAULT_LANGUAGE])["name"]


def localized(code: str, key: str, phone: Optional[str] = None) -> str:
    entry = LANGUAGES.get(code, LANGUAGES[DEFAULT_LANGUAGE])
    return entry[key].format(phone=phone or config.SERVICE_DESK_PHONE)


def detect_language(text: str) -> str:
    """Return a supported language code; unsupported or undetectable input is English."""
    text = (text or "").strip()
    if not text:
        return DEFAULT_LANGUAGE
    if ARABIC_SCRIPT_RE.search(text):
        return "ar"
    try:
        code = detect(text)
    except LangDetectException:
        code = None
    if is_supported(code):
        return code
    if SPANISH_MARKERS_RE.search(text):
        return "es"
    return DEFAULT_LANGUAGE


def build_translation_prompt(text: str, from_code: str, to_code: str) -> str:
    return (
        f"Translate the following text from {language_name(from_code)} to {language_name(to_code)}.\n"
        "Reply with the translation only. Do not add notes, quotes or explanations.\n\n"
        f"{text}"
    )


def _clean_reply(reply: str) -> str:
    out = (reply or "").strip()
    if len(out) >= 2 and out[0] == out[-1] and out[0] in ("\"", "'"):
        out = out[1:-1].strip()
    return out


class LanguagePipeline:
    def __init__(self, provider, timeout_sec: Optional[float] = None, max_tokens: Optional[int] = None, pivot: Optional[str] = None):
        self.provider = provider
        self.timeout_sec = config.TRANSLATE_TIMEOUT_SEC if timeout_sec is None else float(timeout_sec)
        self.max_tokens = max_tokens or config.TRANSLATE_MAX_TOKENS
        self.pivot = pivot or config.PIVOT_LANGUAGE

    def detect(self, text: str) -> str:
        return detect_language(text)

    def translate(self, text: str, from_code: str, to_code: str, deadline: Optional[Deadline] = None) -> Translation:
        if from_code == to_code or not (text or "").strip():
            return Translation(text, TranslationStatus.UNCHANGED, from_code, to_code)

        timeout = clip_timeout(deadline, f"translate_{from_code}_{to_code}", self.timeout_sec)
        t0 = time.time()
        try:
            reply = self.provider.complete(
                build_translation_prompt(text, from_code, to_code),
                timeout=timeout,
                max_tokens=self.max_tokens,
                temperature=0.0,
                top_p=1.0,
            )
        except ProviderUnavailable as e:
            jlog({"level": "WARN", "event": "translate_failed", "from": from_code, "to": to_code, "detail": str(e)})
            return Translation(text, TranslationStatus.PASSTHROUGH, from_code, to_code)

        translated = _clean_reply(reply)
        if not translated:
            jlog({"level": "WARN", "event": "translate_empty", "from": from_code, "to": to_code})
            return Translation(text, TranslationStatus.PASSTHROUGH, from_code, to_code)

        jlog({"event": "translate_ok", "from": from_code, "to": to_code, "ms": int((time.time() - t0) * 1000)})
        return Translation(translated, TranslationStatus.TRANSLATED, from_code, to_code)

    def to_pivot(self, text: str, from_code: str, deadline: Optional[Deadline] = None) -> Translation:
        return self.translate(text, from_code, self.pivot, deadline)

    def from_pivot(self, text: str, to_code: str, deadline: Optional[Deadline] = None) -> Translation:
        return self.translate(text, self.pivot, to_code, deadline)
