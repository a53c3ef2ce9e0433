"""
# Spaced Repetition Primitives

Pure numeric helpers shared by the scheduler and the review recorder.

## Key Features

### 1. SM-2 Interval Calculation
- **Input**: Quality rating (0-5), current interval, ease factor, repetition number.
- **Output**: Next interval in days and the updated ease factor.

### 2. Interval Scaling
- Multiplies an interval sequence by a factor, flooring to whole days (minimum 1).

### 3. Deterministic Jitter
- Spreads reminders of different sessions across a window around the preferred hour.
- Uses the 32-bit FNV-1a hash of `"{session_id}-{interval_days}"`, so the same session and
  interval always get the same offset across processes and restarts.

## Usage Example

```python
interval, ease = calculate_next_review(
    rating=4,              # "correct easily"
    current_interval=6,
    current_ease=2.5,
    repetition_number=3,
)
# interval == 15, ease == 2.5
```
"""

import math
from datetime import datetime, timedelta
from typing import Iterable, List, Tuple

FNV_OFFSET_BASIS_32 = 0x811C9DC5
FNV_PRIME_32 = 0x01000193

MIN_EASE_FACTOR = 1.3


def calculate_next_review(
    rating: int,
    current_interval: int,
    current_ease: float,
    repetition_number: int,
    min_ease: float = MIN_EASE_FACTOR,
) -> Tuple[int, float]:
    """
    Calculate the next review interval and ease factor with the SM-2 algorithm.

    **Ease Factor:**
    `EF' = EF + (0.1 - (5 - q) * (0.08 + (5 - q) * 0.02))`, never below `min_ease`.
    The ease factor is updated for every rating, including failed recalls.

    **Interval Progression:**
    - Failed recall (rating < 3): 1 day
    - Repetition 1: 1 day
    - Repetition 2: 6 days
    - Subsequent: `round(current_interval * EF')`

    Args:
        rating: Quality of recall (0-5).
        current_interval: Interval in days that led to this review.
        current_ease: Ease factor before this review.
        repetition_number: 1-based number of this review for the item.
        min_ease: Lower bound for the ease factor.

    Returns:
        A tuple `(next_interval_days, new_ease_factor)`.
    """
    new_ease = current_ease + (0.1 - (5 - rating) * (0.08 + (5 - rating) * 0.02))
    if new_ease < min_ease:
        new_ease = min_ease

    if rating < 3:
        new_interval = 1
    elif repetition_number <= 1:
        new_interval = 1
    elif repetition_number == 2:
        new_interval = 6
    else:
        new_interval = max(1, int(round(current_interval * new_ease)))

    return new_interval, round(new_ease, 2)


def scale_intervals(intervals: Iterable[int], factor: float) -> List[int]:
    """Scale every interval by `factor`, flooring to whole days with a minimum of 1."""
    return [max(1, math.floor(days * factor)) for days in intervals]


def fnv1a_32(value: str) -> int:
    """32-bit FNV-1a hash of the UTF-8 bytes of `value`."""
    h = FNV_OFFSET_BASIS_32
    for byte in value.encode("utf-8"):
        h ^= byte
        h = (h * FNV_PRIME_32) & 0xFFFFFFFF
    return h


def deterministic_jitter_minutes(session_id: str, interval_days: int, max_jitter_minutes: int) -> int:
    """Offset in `[-max_jitter_minutes, +max_jitter_minutes]` derived from the session and interval."""
    if max_jitter_minutes <= 0:
        return 0
    h = fnv1a_32(f"{session_id}-{interval_days}")
    return (h % (2 * max_jitter_minutes + 1)) - max_jitter_minutes


def add_deterministic_jitter(
    reminder_time: datetime, session_id: str, interval_days: int, max_jitter_minutes: int
) -> datetime:
    offset = deterministic_jitter_minutes(session_id, interval_days, max_jitter_minutes)
    return reminder_time + timedelta(minutes=offset)
