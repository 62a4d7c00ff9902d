import math
import time
from typing import Callable, Optional

Clock = Callable[[], int]

# Anything below this is a seconds-resolution epoch (10 digits until year 33658).
SECONDS_THRESHOLD = 10**12


def now_ms() -> int:
    return int(time.time() * 1000)


def normalize_timestamp(value: object, clock: Optional[Clock] = None) -> int:
    """Coerce a gateway timestamp (seconds or ms, number or string) to epoch ms.

    Non-numeric, non-finite or non-positive input falls back to the current time.
    """
    clock = clock or now_ms
    if isinstance(value, bool):
        return clock()
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return clock()
    if not math.isfinite(number) or number <= 0:
        return clock()
    if number < SECONDS_THRESHOLD:
        return int(number * 1000)
    return int(number)
