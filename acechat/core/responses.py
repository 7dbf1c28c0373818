"""
Tutor Prompt and Response Post-Processing

Holds the fixed tutor persona prompt and the helpers that turn a finished
model reply into a chat message: newline normalization, correction
classification and the text that gets spoken aloud.

Usage:
    from acechat.core.responses import classify, normalize_response

    text = normalize_response(raw)
    kind = classify(text)
    spoken = vocalization_text(text, kind)
"""

from .models import MessageKind

# Separates the conversational reply from the grammar correction
CORRECTION_MARKER = "✏️ Correction:"

TUTOR_SYSTEM_PROMPT = """You are Grace, a friendly native English speaker having a casual conversation.

Your personality:
- Warm, encouraging, and fun to talk to
- Genuinely interested in what the user says
- Keep responses short (2-3 sentences max) and always ask one follow-up question

Response format rules:
- Always start with your natural conversational reply
- If the user made a grammar mistake, append a correction section EXACTLY like this:

✏️ Correction:
You said "[original]" → Try "[corrected]" instead. [One sentence explanation]

- If there is NO grammar mistake, do NOT include the ✏️ Correction: section at all
- Never mention grammar inside your conversational reply

Examples:

User: "I'm exciting about the trip"
Reply: "Oh you're excited about the trip? That sounds amazing! Where are you going?
✏️ Correction:
You said "I'm exciting" → Try "I'm excited" instead. 'Exciting' describes things, 'excited' describes how you feel."

User: "I went to school today"
Reply: "Nice! How was it? Did anything interesting happen?\""""


def normalize_response(text: str) -> str:
    """Convert literal backslash-n sequences the model may emit into real newlines."""
    return text.replace("\\n", "\n")


def classify(text: str) -> MessageKind:
    """CORRECTION iff the text contains the correction marker."""
    if CORRECTION_MARKER in text:
        return MessageKind.CORRECTION
    return MessageKind.NORMAL


def split_correction(text: str) -> tuple[str, str]:
    """
    Split a reply into its conversational part and its correction part.

    Args:
        text: Normalized reply text

    Returns:
        (reply, correction) with the correction starting at the marker,
        or (text, "") when there is no marker
    """
    index = text.find(CORRECTION_MARKER)
    if index < 0:
        return text, ""
    return text[:index], text[index:]


def vocalization_text(text: str, kind: MessageKind) -> str:
    """
    Text to hand to speech output.

    Corrections are shown but never spoken: only the trimmed reply before
    the marker is vocalized. Normal replies are spoken in full.
    """
    if kind == MessageKind.CORRECTION:
        reply, _ = split_correction(text)
        return reply.strip()
    return text
