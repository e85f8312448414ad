"""Personality modes: tone profiles layered on top of the tenant system prompt.

Each mode carries framing instructions plus temperature / max-token overrides.
``PersonalityPolicy`` picks one per message with ordered keyword rules and is
injected into the AI generator, so swapping the policy swaps the behaviour.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class PersonalityMode:
    name: str
    prefix: str
    suffix: str
    style: str
    temperature: float
    max_tokens: int

    def prompt_addendum(self) -> str:
        return (
            f"Tone: {self.style}.\n"
            f'Where natural, open with a phrase like "{self.prefix.strip()}" '
            f'and close with a line like "{self.suffix.strip()}"'
        )


PERSONALITY_MODES: dict[str, PersonalityMode] = {
    "default": PersonalityMode(
        name="default",
        prefix="Happy to help. ",
        suffix=" Let me know if there is anything else.",
        style="calm, confident, polite",
        temperature=0.65,
        max_tokens=280,
    ),
    "confused": PersonalityMode(
        name="confused",
        prefix="I understand this can seem complex at first. ",
        suffix=" Take your time, I'm here to clarify step by step.",
        style="patient, explanatory, reassuring",
        temperature=0.75,
        max_tokens=300,
    ),
    "enterprise": PersonalityMode(
        name="enterprise",
        prefix="Understood. From an enterprise perspective, ",
        suffix=" This is designed to scale with your organisation.",
        style="formal, precise, executive-level",
        temperature=0.5,
        max_tokens=280,
    ),
    "sme": PersonalityMode(
        name="sme",
        prefix="For a growing business like yours, ",
        suffix=" This setup is cost-effective and quick to start with.",
        style="practical, value-driven, direct",
        temperature=0.6,
        max_tokens=280,
    ),
    "sales": PersonalityMode(
        name="sales",
        prefix="Great question. ",
        suffix=" Would you like a quick demo or a pricing overview?",
        style="helpful, opportunity-focused, subtle close",
        temperature=0.7,
        max_tokens=280,
    ),
    "technical": PersonalityMode(
        name="technical",
        prefix="From a technical standpoint, ",
        suffix=" Let me know what you see after trying this.",
        style="technical, systematic, step-by-step",
        temperature=0.45,
        max_tokens=320,
    ),
    "security": PersonalityMode(
        name="security",
        prefix="From a security perspective, ",
        suffix=" Never share passwords or one-time codes with anyone, including us.",
        style="precise, risk-aware, careful",
        temperature=0.4,
        max_tokens=300,
    ),
}

# Evaluated in order, first match wins.
DEFAULT_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("confused", ("confused", "not understand", "don't understand", "how does", "explain")),
    ("enterprise", ("enterprise", "company", "scale", "production")),
    ("sme", ("small", "startup", "affordable")),
    ("sales", ("price", "cost", "demo", "show me", "how much")),
    ("security", ("security", "vulnerability", "password", "hacked", "fraud")),
    ("technical", ("deploy", "webhook", "integration", "api key", "error", "install")),
)


class PersonalityPolicy:
    def __init__(
        self,
        modes: Optional[dict[str, PersonalityMode]] = None,
        rules: tuple[tuple[str, tuple[str, ...]], ...] = DEFAULT_RULES,
        default_mode: str = "default",
    ):
        self.modes = modes or PERSONALITY_MODES
        self.rules = rules
        self.default_mode = default_mode

    def select(self, text: str) -> PersonalityMode:
        lower = (text or "").lower()
        for mode_name, keywords in self.rules:
            if any(keyword in lower for keyword in keywords):
                return self.modes[mode_name]
        return self.modes[self.default_mode]
