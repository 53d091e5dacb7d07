"""
Lookup Tables — Branch (by dialed number) and wrap-up code labels.

Plain immutable mappings plus the phone-number normalizers they are keyed by.
"""

from __future__ import annotations

import re
from types import MappingProxyType

_SCHEME = re.compile(r"^(tel:|sip:)")
_NON_DIGITS = re.compile(r"\D")

UNCODED = "Uncoded"


def _branch(name: str, *numbers: str) -> dict[str, str]:
    return {number: name for number in numbers}


# Last 10 digits of the dialed number -> branch
DNIS_TO_BRANCH = MappingProxyType(
    {
        **_branch("Al-Dolai", "7734011011", "7735011011", "7834011011", "7835011011"),
        **_branch("Al-Krada", "7742101010", "7746101010", "7842101010", "7846101010"),
        **_branch(
            "Al-Sadr - Tawn Hyp.",
            "7736121212",
            "7737121212",
            "7836121212",
            "7837121212",
        ),
        **_branch("ElMansour", "7732224446", "7732224447", "7832224447", "7852224447"),
        **_branch(
            "Palestine St.", "7722900007", "7822400007", "7822900007", "7722400007"
        ),
        **_branch(
            "Palestine St. - Tawn Hyp.",
            "7734171717",
            "7735171717",
            "7834171717",
            "7835171717",
        ),
        **_branch(
            "Salehia - Tawn Hyp.",
            "7746161616",
            "7747161616",
            "7846161616",
            "7847161616",
        ),
        **_branch("Al Jamiya", "7736141414", "7737141414", "7836141414", "7837141414"),
        **_branch("Zayouna", "7750000403", "7750000406", "7850000403", "7850000406"),
    }
)

WRAP_UP_LABELS = MappingProxyType(
    {
        "c649a66b-38c9-4ef5-b022-3445b061e5a0": "Order Placed طلب",
        "7553e655-f4b2-44d9-9037-407d0ec9d5f6": "Delay In Delivery تأخير في الطلب",
        "332220a7-576d-47fb-9b33-55ee16998fd9": "Order Canceled الغاء طلب",
        "d3244924-1997-45bf-8df4-9a1ef95105e3": "Complaint مشكلة في طلب",
        "6f6652bc-5a15-4c80-93c1-50c86ccec218": "Inquiry استعلام",
        "ININ-WRAP-UP-TIMEOUT": "ININ-WRAP-UP-TIMEOUT",
        "6c340a6b-f981-4a24-aa7e-980533cb841e": "Missed or Wrong Call رقم خاطئ او مكالمة فائته",
    }
)


def normalize_address(raw: str) -> str:
    """Strip a tel:/sip: scheme and anything from '@' on."""
    return _SCHEME.sub("", raw).split("@")[0]


def normalize_dnis(raw: str) -> str:
    """Last 10 digits of a dialed number."""
    if not raw:
        return ""
    return _NON_DIGITS.sub("", normalize_address(raw))[-10:]


def resolve_branch(dnis: str | None) -> str | None:
    """Branch label for a dialed number, or None when unmapped."""
    if not dnis:
        return None
    return DNIS_TO_BRANCH.get(normalize_dnis(dnis))


def resolve_wrap_up(code: str | None, name: str | None) -> str:
    """Human label for a wrap-up code; falls back to name, code, then Uncoded."""
    if code and code in WRAP_UP_LABELS:
        return WRAP_UP_LABELS[code]
    return name or code or UNCODED
