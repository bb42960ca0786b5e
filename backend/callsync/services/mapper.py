"""Translate raw Retell call payloads into ``NormalizedCallRecord`` values.

The upstream shape is untrusted. Every target field is resolved from an ordered
list of source paths in ``FIELD_RULES``; the first source that yields a usable
value wins, otherwise the rule's default applies. Only a missing ``call_id``
is an error, since it is the dedup key.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from callsync.schemas import NormalizedCallRecord, ResolvedOwnership, UNRESOLVED
from callsync.services.pricing import RatePolicy, to_decimal

logger = logging.getLogger(__name__)

UNKNOWN_SENTINEL = "unknown"
MILLISECOND_EPOCH_THRESHOLD = 1e12
PHONE_DISALLOWED = re.compile(r"[^+\d\-()\s]")

# Fields whose fallback marks the record as degraded. Nullable fields are not
# listed: a null recording or transcript is a complete record.
DEGRADING_FIELDS = {"start_time", "duration_sec", "cost_usd", "call_status"}


class MappingError(ValueError):
    """The raw record cannot be mapped at all."""


def _text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list, bool)):
        return None
    cleaned = str(value).strip()
    return cleaned or None


def _phone(value: Any) -> Optional[str]:
    text = _text(value)
    if text is None or text.lower() == UNKNOWN_SENTINEL:
        return None
    cleaned = PHONE_DISALLOWED.sub("", text).strip()
    return cleaned or None


def _number(value: Any) -> Optional[Decimal]:
    if isinstance(value, str):
        value = value.strip() or None
    return to_decimal(value)


def _non_negative_int(value: Any) -> Optional[int]:
    number = _number(value)
    if number is None or number < 0:
        return None
    return int(number)


def _seconds_from_ms(value: Any) -> Optional[int]:
    number = _non_negative_int(value)
    return None if number is None else number // 1000


def _money(value: Any) -> Optional[Decimal]:
    number = _number(value)
    if number is None or number < 0:
        return None
    return number


def _money_from_cents(value: Any) -> Optional[Decimal]:
    number = _money(value)
    return None if number is None else number / Decimal(100)


def _score(value: Any) -> Optional[float]:
    number = _number(value)
    return None if number is None else float(number)


def _timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str) and not value.strip().replace(".", "", 1).isdigit():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    number = _number(value)
    if number is None or number <= 0:
        return None
    seconds = float(number)
    if seconds > MILLISECOND_EPOCH_THRESHOLD:
        seconds = seconds / 1000
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


@dataclass(frozen=True)
class Source:
    path: Tuple[str, ...]
    coerce: Callable[[Any], Any]


def src(path: str, coerce: Callable[[Any], Any]) -> Source:
    return Source(tuple(path.split(".")), coerce)


@dataclass(frozen=True)
class FieldRule:
    target: str
    sources: Tuple[Source, ...]
    default: Any = None


FIELD_RULES: Tuple[FieldRule, ...] = (
    FieldRule("retell_agent_id", (src("agent_id", _text),)),
    FieldRule("start_time", (src("start_timestamp", _timestamp), src("start_time", _timestamp))),
    FieldRule("end_time", (src("end_timestamp", _timestamp), src("end_time", _timestamp))),
    FieldRule(
        "duration_sec",
        (
            src("duration_sec", _non_negative_int),
            src("duration", _non_negative_int),
            src("duration_ms", _seconds_from_ms),
        ),
    ),
    FieldRule(
        "cost_usd",
        (src("cost", _money), src("cost_usd", _money), src("call_cost.combined_cost", _money_from_cents)),
        Decimal("0"),
    ),
    FieldRule("call_status", (src("call_status", _text), src("status", _text)), UNKNOWN_SENTINEL),
    FieldRule("disposition", (src("disposition", _text),)),
    FieldRule("disconnection_reason", (src("disconnection_reason", _text),)),
    FieldRule("from_number", (src("from_number", _phone), src("from", _phone))),
    FieldRule("to_number", (src("to_number", _phone), src("to", _phone))),
    FieldRule("recording_url", (src("recording_url", _text), src("audio_url", _text))),
    FieldRule("transcript", (src("transcript", _text),)),
    FieldRule("transcript_url", (src("transcript_url", _text),)),
    FieldRule(
        "sentiment",
        (
            src("sentiment.overall_sentiment", _text),
            src("sentiment.label", _text),
            src("sentiment", _text),
            src("call_analysis.user_sentiment", _text),
        ),
    ),
    FieldRule("sentiment_score", (src("sentiment.score", _score), src("sentiment_score", _score))),
    FieldRule(
        "call_summary",
        (src("summary", _text), src("call_summary", _text), src("call_analysis.call_summary", _text)),
    ),
    FieldRule("latency_ms", (src("latency_ms", _non_negative_int), src("latency.e2e.p50", _non_negative_int))),
)


def _dig(raw: Dict[str, Any], path: Tuple[str, ...]) -> Any:
    value: Any = raw
    for key in path:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


def resolve_fields(raw: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
    """Apply ``FIELD_RULES``; returns the values and the targets that fell back."""
    values: Dict[str, Any] = {}
    defaulted: List[str] = []
    for rule in FIELD_RULES:
        for source in rule.sources:
            value = source.coerce(_dig(raw, source.path))
            if value is not None:
                values[rule.target] = value
                break
        else:
            values[rule.target] = rule.default
            defaulted.append(rule.target)
    return values, defaulted


def extract_call_id(raw: Any) -> str:
    if not isinstance(raw, dict):
        raise MappingError(f"call record must be an object, got {type(raw).__name__}")
    call_id = raw.get("call_id")
    if not isinstance(call_id, str) or not call_id.strip():
        raise MappingError("call record is missing call_id")
    return call_id.strip()


def map_call(
    raw: Dict[str, Any],
    ownership: ResolvedOwnership = UNRESOLVED,
    rate_policy: Optional[RatePolicy] = None,
    now: Optional[datetime] = None,
    fallback_agent_id: Optional[str] = None,
) -> NormalizedCallRecord:
    call_id = extract_call_id(raw)
    rate_policy = rate_policy or RatePolicy()
    values, defaulted = resolve_fields(raw)

    # scoped listings are filtered by this agent
    if values["retell_agent_id"] is None and fallback_agent_id:
        values["retell_agent_id"] = fallback_agent_id
        defaulted.remove("retell_agent_id")

    start_time = values["start_time"]
    if start_time is None:
        start_time = now or datetime.now(timezone.utc)

    duration = values["duration_sec"]
    if duration is None:
        duration = 0
        end_time = values["end_time"]
        if "start_time" not in defaulted and end_time is not None and end_time >= start_time:
            duration = int((end_time - start_time).total_seconds())
            defaulted.remove("duration_sec")

    revenue = rate_policy.revenue(duration, ownership)
    agent_rate = to_decimal(ownership.rate_per_minute)
    if agent_rate is None or agent_rate <= 0:
        defaulted.append("rate_per_minute")

    if defaulted:
        logger.debug("Call %s mapped with defaults for %s", call_id, ", ".join(defaulted))

    values.update(
        start_time=start_time,
        duration_sec=duration,
        revenue_amount=revenue,
    )
    return NormalizedCallRecord(
        call_id=call_id,
        user_id=ownership.owner_user_id,
        company_id=ownership.organization_id,
        agent_id=ownership.local_agent_id,
        is_degraded=bool(DEGRADING_FIELDS.intersection(defaulted)),
        defaulted_fields=defaulted,
        raw_payload=raw,
        **values,
    )
