from typing import Optional

from gateway.domain.models import DEFAULT, FALLBACK, HealthStatus


def select_processor(default: HealthStatus, fallback: HealthStatus) -> Optional[str]:
    """Pick the processor a payment should be forwarded to.

    When both processors report failing, ``default`` is still returned: traffic
    keeps flowing to the primary instead of stalling the queue. Callers must
    nevertheless treat ``None`` as "nothing selectable".
    """
    if default.failing and fallback.failing:
        return DEFAULT

    if default.failing:
        return FALLBACK

    if fallback.failing:
        return DEFAULT

    return select_best_performing(default, fallback)


def select_best_performing(default: HealthStatus, fallback: HealthStatus) -> str:
    # Measured latency decides first, the processor-reported minimum second
    if default.latency <= fallback.latency:
        return DEFAULT

    if default.min_response_time <= fallback.min_response_time:
        return DEFAULT

    return FALLBACK
