"""
Time-decay penalty functions.

All functions are pure. A missing anchor means the signal is not
applicable and returns None so the calculator can leave it out of the
breakdown; an anchor in the future (clock skew, snooze) yields zero.

``baseline`` moves the decay clock forward without changing which event
is the anchor. Snoozed and revived deals restart decay from that point.
"""

from datetime import datetime

from .config import SignalConfig

SECONDS_PER_HOUR = 3600.0


def elapsed_hours(anchor: datetime, now: datetime) -> float:
    """Continuous hours from anchor to now, clamped at zero."""
    return max(0.0, (now - anchor).total_seconds() / SECONDS_PER_HOUR)


def decay_penalty(elapsed: float, config: SignalConfig, rate_multiplier: float = 1.0) -> float:
    """penalty = min(cap, max(0, (elapsed - grace) / 24 * rate))"""
    past_grace = max(0.0, elapsed - config.grace_hours)
    return min(config.cap, past_grace / 24 * config.daily_rate * rate_multiplier)


def signal_penalty(
    anchor: datetime | None,
    now: datetime,
    config: SignalConfig,
    *,
    baseline: datetime | None = None,
    rate_multiplier: float = 1.0,
) -> float | None:
    if anchor is None:
        return None
    if baseline is not None and baseline > anchor:
        anchor = baseline
    return decay_penalty(elapsed_hours(anchor, now), config, rate_multiplier)


def silence_penalty(
    last_inbound_at: datetime | None,
    sent_at: datetime | None,
    now: datetime,
    config: SignalConfig,
    *,
    baseline: datetime | None = None,
    rate_multiplier: float = 1.0,
) -> float | None:
    """Silence decays from the last inbound contact, or from sent_at if there was none."""
    return signal_penalty(
        last_inbound_at or sent_at,
        now,
        config,
        baseline=baseline,
        rate_multiplier=rate_multiplier,
    )


def email_not_opened_penalty(
    email_sent_at: datetime | None,
    engaged_at: datetime | None,
    now: datetime,
    config: SignalConfig,
    *,
    baseline: datetime | None = None,
) -> float | None:
    """
    Penalty for the latest outbound email going unopened.

    An open (or any reply) at or after the send resets the signal to zero.
    """
    if email_sent_at is None:
        return None
    if engaged_at is not None and engaged_at >= email_sent_at:
        return 0.0
    return signal_penalty(email_sent_at, now, config, baseline=baseline)


def proposal_not_viewed_penalty(
    proposal_sent_at: datetime | None,
    viewed_at: datetime | None,
    now: datetime,
    config: SignalConfig,
    *,
    baseline: datetime | None = None,
) -> float | None:
    if proposal_sent_at is None:
        return None
    if viewed_at is not None and viewed_at >= proposal_sent_at:
        return 0.0
    return signal_penalty(proposal_sent_at, now, config, baseline=baseline)
