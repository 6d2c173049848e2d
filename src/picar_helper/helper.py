from typing import Optional, Sequence


def clamp(raw: float, min_val: float, max_val: float) -> float:
    lower = min(min_val, max_val)
    upper = max(min_val, max_val)
    clamped = max(lower, min(upper, raw))

    return clamped


def within_epsilon(
    values: Sequence[float],
    reference: Optional[Sequence[float]],
    epsilon: float
) -> bool:
    """
    True if every component of values is closer than epsilon to the matching
    component of reference. Nothing is close to a missing reference.
    """
    if reference is None or len(values) != len(reference):
        return False

    return all(abs(a - b) < epsilon for a, b in zip(values, reference))
