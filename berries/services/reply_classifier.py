"""
Reply classification: decide whether a completion is a chart or plain text.
"""
from __future__ import annotations

import json
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictStr, model_validator


ChartKind = Literal["bar", "line", "pie"]
CHART_KINDS = ("bar", "line", "pie")

FiniteNumber = Annotated[float, Field(strict=True, allow_inf_nan=False)]


class ChartPayload(BaseModel):
    """Structured assistant reply rendered as a chart by the client."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    chart_type: ChartKind = Field(..., alias="chartType")
    title: StrictStr = ""
    labels: List[StrictStr]
    data: List[FiniteNumber]

    @model_validator(mode="after")
    def check_parallel_sequences(self) -> "ChartPayload":
        if len(self.labels) != len(self.data):
            raise ValueError(
                f"labels and data must have the same length ({len(self.labels)} != {len(self.data)})"
            )
        return self

    def to_wire(self) -> dict:
        """Serialize with the keys the chart client expects."""
        return self.model_dump(by_alias=True)


class TextReply(BaseModel):
    kind: Literal["text"] = "text"
    text: str

    @property
    def content(self) -> Any:
        return self.text


class ChartReply(BaseModel):
    kind: Literal["chart"] = "chart"
    chart: ChartPayload

    @property
    def content(self) -> Any:
        return self.chart.to_wire()


Reply = Union[TextReply, ChartReply]


def find_object_span(text: str) -> Optional[str]:
    """
    Return the first balanced top-level ``{...}`` span in ``text``.

    Braces inside JSON string literals are ignored. Returns None when there
    is no opening brace or the first object never closes.
    """
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start:index + 1]
    return None


def _decode_chart(candidate: str) -> Optional[ChartPayload]:
    try:
        decoded = json.loads(candidate)
        return ChartPayload.model_validate(decoded)
    except (ValueError, RecursionError):
        # json.JSONDecodeError and pydantic.ValidationError are both ValueErrors
        return None


def classify_reply(raw: str) -> Reply:
    """
    Classify raw completion text as a chart or as plain text.

    The whole trimmed text is decoded first; failing that, the first balanced
    object span inside it. The decoded value must validate as a ChartPayload.
    Anything else falls back to ``TextReply`` carrying ``raw`` verbatim.
    This function never raises.
    """
    if not isinstance(raw, str):
        raw = "" if raw is None else str(raw)

    trimmed = raw.strip()
    if not trimmed:
        return TextReply(text=raw)

    chart = _decode_chart(trimmed)
    if chart is None:
        span = find_object_span(trimmed)
        if span is not None and span != trimmed:
            chart = _decode_chart(span)

    if chart is None:
        return TextReply(text=raw)
    return ChartReply(chart=chart)
