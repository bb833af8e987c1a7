# taste_core/tiers.py
SUPERFAN = "superfan"
HIGH_POTENTIAL = "high_potential"
MODERATE = "moderate"
LOW = "low"

TIERS = (SUPERFAN, HIGH_POTENTIAL, MODERATE, LOW)


def engagement_tier(score: float) -> str:
    s = float(score)
    if s >= 75: return SUPERFAN
    if s >= 50: return HIGH_POTENTIAL
    if s >= 25: return MODERATE
    return LOW

def tier_label(score: float) -> str:
    s = float(score)
    if s >= 75: return "Superfan"
    if s >= 50: return "High potential"
    if s >= 25: return "Moderate"
    return "Casual"
