"""Tabular view of a study's measurements, for listing and CSV export."""

from pathlib import Path
from typing import Iterable, Union

import polars as pl

from ..models import Measurement

COLUMNS = {
    "id": pl.Utf8,
    "tool_name": pl.Utf8,
    "measurement_type": pl.Utf8,
    "series_instance_uid": pl.Utf8,
    "sop_instance_uid": pl.Utf8,
    "frame_index": pl.Int64,
    "value": pl.Float64,
    "unit": pl.Utf8,
    "display": pl.Utf8,
    "mean": pl.Float64,
    "std_dev": pl.Float64,
    "min": pl.Float64,
    "max": pl.Float64,
    "area": pl.Float64,
    "visible": pl.Boolean,
}


def format_value(m: Measurement) -> str:
    if m.value is None:
        return "N/A"
    return f"{m.value:.2f} {m.unit or ''}".rstrip()


def measurement_table(measurements: Iterable[Measurement]) -> pl.DataFrame:
    rows = []
    for m in measurements:
        rs = m.roi_stats
        rows.append({
            "id": m.id,
            "tool_name": m.tool_name,
            "measurement_type": m.measurement_type,
            "series_instance_uid": m.series_instance_uid,
            "sop_instance_uid": m.sop_instance_uid,
            "frame_index": m.frame_index,
            "value": m.value,
            "unit": m.unit,
            "display": format_value(m),
            "mean": rs.mean if rs else None,
            "std_dev": rs.std_dev if rs else None,
            "min": rs.min if rs else None,
            "max": rs.max if rs else None,
            "area": rs.area if rs else None,
            "visible": m.visible,
        })
    return pl.DataFrame(rows, schema=COLUMNS)


def write_measurements_csv(measurements: Iterable[Measurement], path: Union[str, Path]) -> Path:
    path = Path(path)
    measurement_table(measurements).write_csv(path)
    return path
