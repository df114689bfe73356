"""Request-level enrichment applied to decoded records before dispatch."""

from __future__ import annotations

from typing import List

from relay.models import EventKind, RawRecord

__all__ = ["add_ip", "add_token"]


def add_ip(records: List[RawRecord], kind: EventKind, ip: str) -> List[RawRecord]:
    """``properties.ip`` on events, ``$ip`` on profile updates."""

    if not ip:
        return records
    for record in records:
        if kind is EventKind.track:
            props = record.get("properties")
            if not isinstance(props, dict):
                props = record["properties"] = {}
            props["ip"] = ip
        else:
            record["$ip"] = ip
    return records


def add_token(records: List[RawRecord], kind: EventKind, token: str) -> List[RawRecord]:
    """Fill a missing or empty project token; records carrying one keep it."""

    if not token:
        return records
    for record in records:
        if kind is EventKind.track:
            props = record.get("properties")
            if not isinstance(props, dict):
                props = record["properties"] = {}
            if not props.get("token"):
                props["token"] = token
        elif not (record.get("$token") or record.get("token")):
            record["$token"] = token
    return records
