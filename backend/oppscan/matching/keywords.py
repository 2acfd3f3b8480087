"""
Keyword Matcher

Decides whether a dispensed drug name matches a trigger's detection keywords
and whether one of its exclusion phrases knocks it out again.

Every keyword is a phrase. A phrase is "present" in a drug name when each of
its derived words is a substring of the normalized name, so a single-word
keyword behaves as a plain substring test. `any` mode needs one present
phrase, `all` mode needs every phrase.

Everything here is pure: no session, no settings, no logging.
"""

import re
from dataclasses import dataclass

_NON_ALNUM = re.compile(r"[^A-Z0-9\s]")
_WHITESPACE = re.compile(r"\s+")

# ── Skip words ───────────────────────────────────────────────────────────────
# Tokens that never distinguish one product from another. Keep this list
# free of ingredient and salt names; see PROTECTED_INGREDIENT_WORDS.

UNIT_WORDS = frozenset({
    "MG", "MCG", "ML", "GM", "GRAM", "GRAMS", "KG", "MEQ", "MMOL",
    "UNIT", "UNITS", "IU", "HR", "PCT",
})

DOSAGE_FORM_WORDS = frozenset({
    "ER", "SR", "XR", "DR", "XL", "CR", "ODT",
    "TAB", "TABS", "TABLET", "TABLETS", "CAP", "CAPS", "CAPSULE", "CAPSULES",
    "SOLN", "SUSP", "INJ", "ORAL", "EA", "EACH", "PK", "CT", "HCL",
})

CONNECTIVE_WORDS = frozenset({
    "THE", "AND", "FOR", "WITH", "TO", "OF", "OR", "IN", "PER",
    "IF", "TRY", "ALTERNATES", "FAILS", "BEFORE", "SAYING", "DOESNT", "WORK",
})

SKIP_WORDS = UNIT_WORDS | DOSAGE_FORM_WORDS | CONNECTIVE_WORDS

# Salt and mineral names that are the only difference between products
# (diclofenac sodium vs potassium). They must never become skip words.
PROTECTED_INGREDIENT_WORDS = frozenset({
    "SODIUM", "POTASSIUM", "CALCIUM", "MAGNESIUM", "ZINC", "IRON", "LITHIUM",
    "CHLORIDE", "CITRATE", "CARBONATE", "SULFATE", "PHOSPHATE", "ACETATE",
})

_STRENGTH_SUFFIXES = UNIT_WORDS | {"G"}
_STRENGTH_TOKEN = re.compile(r"^\d+([A-Z]+)$")

MATCH_MODES = ("any", "all")


@dataclass(frozen=True)
class MatchResult:
    """Outcome of matching one drug name against one trigger."""
    matched: bool
    excluded: bool

    @property
    def eligible(self) -> bool:
        return self.matched and not self.excluded


@dataclass(frozen=True)
class KeywordSet:
    phrases: tuple[tuple[str, ...], ...]
    mode: str = "any"

    def __bool__(self) -> bool:
        return bool(self.phrases)


def normalize_drug_text(text: str | None) -> str:
    """Uppercase, punctuation to spaces, single spaces."""
    if not text:
        return ""
    upper = _NON_ALNUM.sub(" ", text.upper())
    return _WHITESPACE.sub(" ", upper).strip()


def _is_strength_token(token: str) -> bool:
    m = _STRENGTH_TOKEN.match(token)
    return bool(m) and m.group(1) in _STRENGTH_SUFFIXES


def derive_keywords(phrase: str | None) -> tuple[str, ...]:
    """Distinguishing words of a detection phrase, in order, without repeats."""
    words: list[str] = []
    for token in normalize_drug_text(phrase).split():
        if len(token) < 2 or token.isdigit():
            continue
        if token in SKIP_WORDS or _is_strength_token(token):
            continue
        if token not in words:
            words.append(token)
    return tuple(words)


def derive_exclusion_words(phrase: str | None) -> tuple[str, ...]:
    """Exclusion phrases keep every word of two or more characters."""
    return tuple(t for t in normalize_drug_text(phrase).split() if len(t) >= 2)


def _phrases(raw: list[str] | None) -> tuple[tuple[str, ...], ...]:
    derived = (derive_keywords(p) for p in (raw or []))
    return tuple(words for words in derived if words)


def detection_keywords(trigger) -> KeywordSet:
    """Explicit detection keywords, else the recommended drug's own words."""
    mode = getattr(trigger, "keyword_match_mode", None) or "any"
    phrases = _phrases(trigger.detection_keywords)
    if not phrases and trigger.recommended_drug:
        phrases = _phrases([trigger.recommended_drug])
    return KeywordSet(phrases=phrases, mode=mode)


def coverage_keywords(trigger) -> KeywordSet:
    """Keywords that identify claims of the product being recommended.

    Coverage evidence is about the recommended product, so its name is used
    whenever there is one. NDC-optimization triggers recommend a better NDC
    of the very product they detect, so they reuse the detection keywords.
    """
    if trigger.trigger_type == "ndc_optimization" or not trigger.recommended_drug:
        return detection_keywords(trigger)
    return KeywordSet(phrases=_phrases([trigger.recommended_drug]), mode="all")


def phrase_present(normalized_text: str, words: tuple[str, ...]) -> bool:
    return bool(words) and all(w in normalized_text for w in words)


def keywords_match(normalized_text: str, keywords: KeywordSet) -> bool:
    if not keywords or not normalized_text:
        return False
    hits = (phrase_present(normalized_text, words) for words in keywords.phrases)
    return all(hits) if keywords.mode == "all" else any(hits)


def is_excluded(normalized_text: str, exclude_keywords: list[str] | None) -> bool:
    for phrase in exclude_keywords or []:
        if phrase_present(normalized_text, derive_exclusion_words(phrase)):
            return True
    return False


def match(drug_name: str | None, trigger, keywords: KeywordSet | None = None) -> MatchResult:
    """Match a dispensed drug name against a trigger.

    `keywords` defaults to the trigger's detection keywords; the coverage
    resolver passes `coverage_keywords(trigger)` instead.
    """
    text = normalize_drug_text(drug_name)
    kws = keywords if keywords is not None else detection_keywords(trigger)
    matched = keywords_match(text, kws)
    excluded = is_excluded(text, trigger.exclude_keywords)
    return MatchResult(matched=matched, excluded=excluded)


def mentions_any(drug_names: list[str], phrases: list[str] | None) -> bool:
    """True when any of a patient's drug names contains any of the phrases."""
    derived = _phrases(phrases)
    normalized = [normalize_drug_text(d) for d in drug_names]
    return any(phrase_present(n, words) for n in normalized for words in derived)


# ── Catalog validation ───────────────────────────────────────────────────────

def validate_trigger(trigger) -> list[str]:
    """Return the reasons a trigger is unusable; empty when it is fine."""
    problems: list[str] = []

    mode = getattr(trigger, "keyword_match_mode", None) or "any"
    if mode not in MATCH_MODES:
        problems.append(f"unknown keyword_match_mode '{mode}'")

    if not detection_keywords(trigger):
        problems.append("no derivable detection keywords (all words are skip words, numbers or too short)")
    if not coverage_keywords(trigger):
        problems.append("no derivable coverage keywords for the recommended drug")

    recommended = normalize_drug_text(trigger.recommended_drug)
    for phrase in trigger.exclude_keywords or []:
        words = derive_exclusion_words(phrase)
        if not words:
            problems.append(f"exclusion phrase '{phrase}' has no usable words")
        elif recommended and phrase_present(recommended, words):
            problems.append(
                f"exclusion phrase '{phrase}' excludes the recommended drug '{trigger.recommended_drug}'"
            )

    return problems
