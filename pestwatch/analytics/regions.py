"""
Australian state and territory normalization.
"""

from typing import Optional

AUSTRALIAN_STATES = {
    "NSW": "New South Wales",
    "VIC": "Victoria",
    "QLD": "Queensland",
    "SA": "South Australia",
    "WA": "Western Australia",
    "TAS": "Tasmania",
    "NT": "Northern Territory",
    "ACT": "Australian Capital Territory",
}

# Checked in order: "new south wales" must win over "south"
_FULL_NAMES = [
    ("new south wales", "NSW"),
    ("queensland", "QLD"),
    ("victoria", "VIC"),
    ("western australia", "WA"),
    ("south australia", "SA"),
    ("tasmania", "TAS"),
    ("northern territory", "NT"),
    ("australian capital territory", "ACT"),
]


def normalize_state(region: Optional[str]) -> Optional[str]:
    """
    Map a free-text region to a state abbreviation.

    Accepts full names anywhere in the text ("Sydney, New South Wales") or an
    exact abbreviation ("nsw"). Returns None when the region is missing or
    not recognized.
    """
    if not region:
        return None

    text = region.lower().strip()
    for name, code in _FULL_NAMES:
        if name in text:
            return code

    code = text.upper()
    if code in AUSTRALIAN_STATES:
        return code
    return None
