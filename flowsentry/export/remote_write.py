"""Prometheus remote-write push.

The primary body is a snappy-compressed ``prometheus.WriteRequest`` protobuf.
The message classes are built on first use from a descriptor, so no
generated ``_pb2`` module has to be shipped. If the backend rejects the
protobuf body, the same samples are sent once more as plain JSON.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Sequence

import httpx
import snappy
import structlog
from google.protobuf import descriptor_pb2, descriptor_pool, message_factory

from flowsentry.errors import ExportDeliveryError
from flowsentry.export.delivery import ExportOutcome, build_auth, post
from flowsentry.models import MetricSample

logger = structlog.get_logger(__name__)

_FDP = descriptor_pb2.FieldDescriptorProto

PROTOBUF_HEADERS = {
    "Content-Type": "application/x-protobuf",
    "Content-Encoding": "snappy",
    "X-Prometheus-Remote-Write-Version": "0.1.0",
}
JSON_HEADERS = {"Content-Type": "application/json"}


def _add_field(
    message: descriptor_pb2.DescriptorProto,
    name: str,
    number: int,
    field_type: int,
    *,
    repeated: bool = False,
    type_name: str | None = None,
) -> None:
    f = message.field.add()
    f.name = name
    f.number = number
    f.type = field_type
    f.label = _FDP.LABEL_REPEATED if repeated else _FDP.LABEL_OPTIONAL
    if type_name:
        f.type_name = type_name


@lru_cache(maxsize=1)
def write_request_class() -> type:
    fdp = descriptor_pb2.FileDescriptorProto(
        name="flowsentry/prometheus_remote.proto",
        package="prometheus",
        syntax="proto3",
    )

    label = fdp.message_type.add(name="Label")
    _add_field(label, "name", 1, _FDP.TYPE_STRING)
    _add_field(label, "value", 2, _FDP.TYPE_STRING)

    sample = fdp.message_type.add(name="Sample")
    _add_field(sample, "value", 1, _FDP.TYPE_DOUBLE)
    _add_field(sample, "timestamp", 2, _FDP.TYPE_INT64)

    series = fdp.message_type.add(name="TimeSeries")
    _add_field(series, "labels", 1, _FDP.TYPE_MESSAGE, repeated=True, type_name=".prometheus.Label")
    _add_field(series, "samples", 2, _FDP.TYPE_MESSAGE, repeated=True, type_name=".prometheus.Sample")

    request = fdp.message_type.add(name="WriteRequest")
    _add_field(request, "timeseries", 1, _FDP.TYPE_MESSAGE, repeated=True, type_name=".prometheus.TimeSeries")

    pool = descriptor_pool.DescriptorPool()
    pool.AddSerializedFile(fdp.SerializeToString())
    return message_factory.GetMessageClass(pool.FindMessageTypeByName("prometheus.WriteRequest"))


def _series_labels(sample: MetricSample) -> tuple[tuple[str, str], ...]:
    # Remote write requires labels sorted by name; __name__ sorts first.
    merged = {**sample.labels, "__name__": sample.name}
    return tuple(sorted((k, str(v)) for k, v in merged.items()))


def build_write_request(samples: Sequence[MetricSample]) -> Any:
    grouped: dict[tuple[tuple[str, str], ...], list[MetricSample]] = {}
    for s in samples:
        grouped.setdefault(_series_labels(s), []).append(s)

    request = write_request_class()()
    for labels, items in grouped.items():
        series = request.timeseries.add()
        for name, value in labels:
            series.labels.add(name=name, value=value)
        for s in sorted(items, key=lambda x: x.timestamp):
            series.samples.add(value=float(s.value), timestamp=int(s.timestamp))
    return request


def encode_protobuf(samples: Sequence[MetricSample]) -> bytes:
    return snappy.compress(build_write_request(samples).SerializeToString())


def _format_value(value: float) -> str:
    v = float(value)
    return str(int(v)) if v.is_integer() else repr(v)


def encode_json(samples: Sequence[MetricSample]) -> dict[str, Any]:
    return {
        "timeSeries": [
            {
                "metric": {"__name__": s.name, **s.labels},
                "value": [int(s.timestamp), _format_value(s.value)],
            }
            for s in samples
        ]
    }


class RemoteWriteEncoder:
    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        url: str,
        api_key: str,
        user: str | None = None,
        timeout_s: float = 10.0,
    ) -> None:
        self._client = client
        self._url = url
        self._auth, self._auth_headers = build_auth(api_key, user)
        self._timeout_s = timeout_s

    async def push(self, samples: Sequence[MetricSample]) -> ExportOutcome:
        try:
            await post(
                self._client,
                self._url,
                headers={**PROTOBUF_HEADERS, **self._auth_headers},
                auth=self._auth,
                timeout_s=self._timeout_s,
                content=encode_protobuf(samples),
            )
        except ExportDeliveryError as exc:
            logger.warning("Remote-write push failed, trying JSON fallback", error=str(exc), **exc.details)
        else:
            logger.info("Metrics pushed", samples=len(samples), encoding="protobuf")
            return ExportOutcome.DELIVERED

        try:
            await post(
                self._client,
                self._url,
                headers={**JSON_HEADERS, **self._auth_headers},
                auth=self._auth,
                timeout_s=self._timeout_s,
                json_body=encode_json(samples),
            )
        except ExportDeliveryError as exc:
            logger.error("Metrics push failed (JSON fallback)", error=str(exc), **exc.details)
            return ExportOutcome.FAILED

        logger.info("Metrics pushed", samples=len(samples), encoding="json")
        return ExportOutcome.DELIVERED_FALLBACK
