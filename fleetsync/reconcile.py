# =============================================================================
# fleetsync -- Snapshot Reconciler
# =============================================================================
#
# Pure functions that merge an authoritative REST snapshot with the live
# entity store. Nothing here mutates the store.
#
# Devices: field overlay. Present live fields win; unreported live fields
# never overwrite the snapshot.
#
# Logs: union + dedup. Two entries are duplicates when
#   1. both carry a primary id and the ids match, else
#   2. both carry a business id and those match, else
#   3. their compound fallback keys match.
# The first-seen entry wins; later duplicates are dropped, never merged.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Hashable, Iterable, Mapping

from .payloads import to_epoch_seconds
from .store import is_valid_identity

if TYPE_CHECKING:
    from .records import DeviceRecord
    from .store import EntityStore


@dataclass(frozen=True, slots=True)
class LogKey:
    """Dedup identity of one log entry."""

    primary: str | None = None
    business: str | None = None
    fallback: Hashable | None = None


KeyFunc = Callable[[Mapping[str, Any]], LogKey]


def _as_dict(item: Any) -> dict[str, Any]:
    if isinstance(item, Mapping):
        return dict(item)
    return item.to_dict()


def _identity(value: Any) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    text = str(value)
    return text if is_valid_identity(text) else None


def normalize_timestamp(value: Any) -> int | None:
    """Whole epoch seconds for ms, seconds or ISO-8601 input."""
    seconds = to_epoch_seconds(value)
    return None if seconds is None else int(seconds)


# -- Key extractors ----------------------------------------------------------


def alarm_log_key(item: Mapping[str, Any]) -> LogKey:
    origin = _identity(item.get("device_id"))
    if origin is None:
        origin = f"{item.get('device_group') or ''}/{item.get('sitename') or ''}"
    created = normalize_timestamp(item.get("created_at", item.get("timestamp")))
    fallback = None if created is None else (origin, item.get("alarm_type"), created)
    return LogKey(primary=_identity(item.get("id")), fallback=fallback)


def traffic_log_key(item: Mapping[str, Any]) -> LogKey:
    address = item.get("address") or item.get("phone_number") or item.get("sender") or ""
    created = normalize_timestamp(item.get("created_at", item.get("timestamp")))
    fallback = None if created is None else (item.get("channel"), address, created)
    return LogKey(
        primary=_identity(item.get("id")),
        business=_identity(item.get("message_id")),
        fallback=fallback,
    )


# -- Merges ------------------------------------------------------------------


def merge_devices(
    snapshot: Iterable[Mapping[str, Any]],
    live: Iterable[DeviceRecord] | Mapping[str, DeviceRecord],
    *,
    identity: str = "id",
) -> list[dict[str, Any]]:
    """Overlay live device state onto a snapshot list.

    Returns one dict per device id: snapshot order first, then live-only
    devices in store order. Items with an invalid identity are kept from
    the snapshot as-is but never appended from the live side.
    """
    records = live.values() if isinstance(live, Mapping) else live
    live_by_id = {record.id: record for record in records}

    merged: list[dict[str, Any]] = []
    seen: set[str] = set()
    for item in snapshot:
        key = _identity(item.get(identity))
        if key is not None:
            if key in seen:
                continue
            seen.add(key)
        result = dict(item)
        record = live_by_id.get(key) if key is not None else None
        if record is not None:
            result.update(record.present_fields())
        merged.append(result)

    for device_id, record in live_by_id.items():
        if device_id in seen or not is_valid_identity(device_id):
            continue
        seen.add(device_id)
        result = record.to_dict()
        result[identity] = device_id
        merged.append(result)
    return merged


def merge_logs(*streams: Iterable[Any], key: KeyFunc) -> list[dict[str, Any]]:
    """Union *streams* in order, dropping later duplicates.

    Runs in linear time: retained keys are indexed by which identifiers
    they carry, so each candidate needs at most four set lookups.
    """
    # (has_primary, has_business) -> retained primaries, businesses, fallbacks
    index: dict[tuple[bool, bool], tuple[set, set, set]] = {
        (p, b): (set(), set(), set()) for p in (True, False) for b in (True, False)
    }
    merged: list[dict[str, Any]] = []

    for stream in streams:
        for raw in stream:
            item = _as_dict(raw)
            k = key(item)
            has_p = k.primary is not None
            has_b = k.business is not None
            if _is_duplicate(k, has_p, has_b, index):
                continue
            primaries, businesses, fallbacks = index[(has_p, has_b)]
            if has_p:
                primaries.add(k.primary)
            if has_b:
                businesses.add(k.business)
            if k.fallback is not None:
                fallbacks.add(k.fallback)
            merged.append(item)
    return merged


def _is_duplicate(
    k: LogKey,
    has_p: bool,
    has_b: bool,
    index: dict[tuple[bool, bool], tuple[set, set, set]],
) -> bool:
    for (other_p, other_b), (primaries, businesses, fallbacks) in index.items():
        if has_p and other_p:
            if k.primary in primaries:
                return True
        elif has_b and other_b:
            if k.business in businesses:
                return True
        elif k.fallback is not None and k.fallback in fallbacks:
            return True
    return False


# -- Store wrappers ----------------------------------------------------------


def reconcile_devices(
    snapshot: Iterable[Mapping[str, Any]], store: EntityStore
) -> list[dict[str, Any]]:
    return merge_devices(snapshot, store.devices())


def reconcile_alarm_logs(
    snapshot: Iterable[Mapping[str, Any]], store: EntityStore, *, live_first: bool = False
) -> list[dict[str, Any]]:
    live = store.alarm_logs()
    streams = (live, snapshot) if live_first else (snapshot, live)
    return merge_logs(*streams, key=alarm_log_key)


def reconcile_traffic_logs(
    snapshot: Iterable[Mapping[str, Any]], store: EntityStore, *, live_first: bool = False
) -> list[dict[str, Any]]:
    live = store.traffic_logs()
    streams = (live, snapshot) if live_first else (snapshot, live)
    return merge_logs(*streams, key=traffic_log_key)
