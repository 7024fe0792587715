"""User-facing guidance attached to recommended actions."""

from __future__ import annotations

from dataclasses import dataclass

from sentinel_engine.models import PatternFamily


@dataclass(frozen=True)
class Guidance:
    message: str
    steps: tuple[str, ...]


GUIDANCE: dict[PatternFamily, Guidance] = {
    PatternFamily.PHISHING_URL: Guidance(
        message="This link looks like a phishing attempt.",
        steps=(
            "Do not enter passwords or payment details on this site",
            "Open the official app or type the address yourself",
            "Report the message as phishing",
        ),
    ),
    PatternFamily.TRANSACTION_ANOMALY: Guidance(
        message="This payment looks unusual for your account.",
        steps=(
            "Check the amount and the recipient before confirming",
            "Contact your bank using the number on your card if unsure",
        ),
    ),
    PatternFamily.FINANCIAL_SCAM: Guidance(
        message="This looks like a payment scam.",
        steps=(
            "Government agencies never demand immediate payment by phone or message",
            "Do not pay with gift cards, wire transfers or cryptocurrency",
            "Hang up and call the organisation on a number you trust",
        ),
    ),
    PatternFamily.INVESTMENT_SCAM: Guidance(
        message="This looks like investment fraud.",
        steps=(
            "Guaranteed high returns are a warning sign",
            "Check the company with your financial regulator",
            "Never move money at someone else's urging",
        ),
    ),
    PatternFamily.SOCIAL_ENGINEERING: Guidance(
        message="Someone may be trying to trick you into sharing access.",
        steps=(
            "Never share passwords, PINs or one-time codes",
            "Do not install remote access software for a stranger",
            "Verify the person through a channel you already use",
        ),
    ),
    PatternFamily.GROOMING_ATTEMPT: Guidance(
        message="This conversation shows warning signs of grooming.",
        steps=(
            "Do not move the chat somewhere private",
            "Never keep secrets from a trusted adult",
            "Tell a parent, guardian or teacher",
        ),
    ),
    PatternFamily.HARASSMENT: Guidance(
        message="This message looks like harassment.",
        steps=(
            "You do not have to reply",
            "Block and report the sender",
            "Keep a record in case you need it later",
        ),
    ),
    PatternFamily.CRISIS_SIGNAL: Guidance(
        message="You don't have to face this alone. Help is available right now.",
        steps=(
            "Call or text a crisis line such as 988 (US) or your local emergency number",
            "Reach out to someone you trust",
            "If you are in immediate danger, call emergency services",
        ),
    ),
    PatternFamily.VIOLENCE_INDICATOR: Guidance(
        message="This message contains a possible threat of violence.",
        steps=(
            "If anyone is in immediate danger, call emergency services",
            "Do not engage with the sender",
            "Save the message and report it",
        ),
    ),
}

_DEFAULT_GUIDANCE = Guidance(
    message="This content may be harmful.",
    steps=("Proceed with caution",),
)


def guidance_for(family: PatternFamily | None) -> Guidance:
    """Return the guidance for *family*, or a generic caution."""
    if family is None:
        return _DEFAULT_GUIDANCE
    return GUIDANCE.get(family, _DEFAULT_GUIDANCE)
