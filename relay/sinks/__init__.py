"""Destination adapters and the registry used to build them from settings."""

from __future__ import annotations

from typing import Dict, List, Type

from relay.settings import Settings
from relay.sinks.azure import AzureSink
from relay.sinks.base import Sink
from relay.sinks.bigquery import BigQuerySink
from relay.sinks.gcs import GCSSink
from relay.sinks.mixpanel import MixpanelSink
from relay.sinks.redshift import RedshiftSink
from relay.sinks.s3 import S3Sink
from relay.sinks.snowflake import SnowflakeSink

__all__ = ["Sink", "SINK_REGISTRY", "build_sinks"]

SINK_REGISTRY: Dict[str, Type[Sink]] = {
    cls.name: cls
    for cls in (
        MixpanelSink,
        BigQuerySink,
        SnowflakeSink,
        RedshiftSink,
        S3Sink,
        GCSSink,
        AzureSink,
    )
}


def build_sinks(settings: Settings) -> List[Sink]:
    """One adapter instance per configured destination, in configured order."""
    return [SINK_REGISTRY[name](settings) for name in settings.destinations]
