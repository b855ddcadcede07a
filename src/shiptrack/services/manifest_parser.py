import re

# Messages must start with one of these to be treated as a manifest
MANIFEST_TRIGGERS = ("!INFO", "#INFO")

# Label patterns by manifest field, tried in order
FIELD_PATTERNS: dict[str, list[str]] = {
    "receiver_name": [
        r"Receivers?\s*Name:\s*(.*)",
    ],
    "receiver_address": [
        r"Receivers?\s*Address:\s*(.*)",
    ],
    "receiver_phone": [
        r"Receivers?\s*Phone:\s*(.*)",
    ],
    "receiver_country": [
        r"Rec[ei]{2}vers?\s*Country:\s*(.*)",  # tolerates "Recievers"
        r"Destination:\s*(.*)",
    ],
    "receiver_email": [
        r"Receivers?\s*E-?mail:\s*(.*)",
    ],
    "sender_name": [
        r"Senders?\s*Name:\s*(.*)",
        r"Sender:\s*(.*)",
    ],
    "sender_country": [
        r"Senders?\s*Country:\s*(.*)",
        r"Origin:\s*(.*)",
    ],
}


def is_manifest_command(text: str) -> bool:
    """Check whether a chat message asks for a shipment to be created."""
    return text.lstrip().upper().startswith(MANIFEST_TRIGGERS)


def parse_manifest(text: str) -> dict[str, str]:
    """Extract manifest fields from a chat message.

    Best effort: fields that cannot be found are simply absent from the result.
    Values are stripped of surrounding whitespace but otherwise kept verbatim.
    """
    fields: dict[str, str] = {}

    for field, patterns in FIELD_PATTERNS.items():
        for pattern in patterns:
            match = re.search(pattern, text, re.IGNORECASE)
            if match and match.group(1).strip():
                fields[field] = match.group(1).strip()
                break

    return fields


LOOKUP_PATTERN = re.compile(r"\s*[!#]INFO[ \t]+([A-Z0-9]+-[A-Z0-9]+)\s*", re.IGNORECASE)


def parse_lookup(text: str) -> str | None:
    """Return the tracking id from a `!INFO <tracking id>` status query."""
    match = LOOKUP_PATTERN.fullmatch(text)
    return match.group(1).upper() if match else None
