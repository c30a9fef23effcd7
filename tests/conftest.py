import datetime as dt
import math
import struct
import sys
from pathlib import Path
from typing import List, Optional, Sequence

import pytest


# Ensure project root is importable for tests
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


from persistence.csv_storage import CsvStorage
from services.hr_zones_service import HeartRateZoneConfig
from utils.config import build_config


START = dt.datetime(2025, 3, 1, 7, 30, tzinfo=dt.timezone.utc)
# Degrees of latitude per metre along a meridian (mean Earth radius 6,371 km)
DEG_PER_M = 180.0 / (math.pi * 6_371_000)


def gpx_document(
    n_points: int,
    step_m: float = 10.0,
    step_s: Optional[float] = 3.0,
    start: dt.datetime = START,
    heart_rates: Optional[Sequence[float]] = None,
    elevations: Optional[Sequence[float]] = None,
    name: str = "Morning Run",
) -> bytes:
    """A northbound GPX 1.1 track with evenly spaced points."""
    points: List[str] = []
    for i in range(n_points):
        parts = [f'<trkpt lat="{45.0 + i * step_m * DEG_PER_M:.10f}" lon="5.0">']
        if elevations is not None:
            parts.append(f"<ele>{elevations[i]}</ele>")
        if step_s is not None:
            stamp = start + dt.timedelta(seconds=i * step_s)
            parts.append(f"<time>{stamp.strftime('%Y-%m-%dT%H:%M:%SZ')}</time>")
        if heart_rates is not None:
            parts.append(
                "<extensions><gpxtpx:TrackPointExtension>"
                f"<gpxtpx:hr>{heart_rates[i]:.0f}</gpxtpx:hr>"
                "</gpxtpx:TrackPointExtension></extensions>"
            )
        parts.append("</trkpt>")
        points.append("".join(parts))
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<gpx version="1.1" creator="pytest" xmlns="http://www.topografix.com/GPX/1/1" '
        'xmlns:gpxtpx="http://www.garmin.com/xmlschemas/TrackPointExtension/v1">'
        f"<trk><name>{name}</name><type>running</type><trkseg>{''.join(points)}</trkseg></trk></gpx>"
    ).encode("utf-8")


@pytest.fixture
def storage(tmp_path):
    return CsvStorage(base_dir=tmp_path)


@pytest.fixture
def cfg(tmp_path):
    return build_config(tmp_path)


@pytest.fixture
def zones():
    return HeartRateZoneConfig.from_bounds(
        [(100, 119), (120, 139), (140, 159), (160, 179), (180, 200)]
    )


@pytest.fixture
def make_gpx():
    return gpx_document


# --- Minimal FIT writer -------------------------------------------------

FIT_EPOCH = dt.datetime(1989, 12, 31, tzinfo=dt.timezone.utc)
FIT_CRC_TABLE = (
    0x0000, 0xCC01, 0xD801, 0x1400, 0xF001, 0x3C00, 0x2800, 0xE401,
    0xA001, 0x6C00, 0x7800, 0xB401, 0x5000, 0x9C01, 0x8801, 0x4400,
)
SPORTS = {"running": 1, "cycling": 2}


def fit_crc(data: bytes, crc: int = 0) -> int:
    for byte in data:
        tmp = FIT_CRC_TABLE[crc & 0xF]
        crc = (crc >> 4) & 0x0FFF
        crc = crc ^ tmp ^ FIT_CRC_TABLE[byte & 0xF]
        tmp = FIT_CRC_TABLE[crc & 0xF]
        crc = (crc >> 4) & 0x0FFF
        crc = crc ^ tmp ^ FIT_CRC_TABLE[(byte >> 4) & 0xF]
    return crc


def _definition(local: int, global_num: int, fields: Sequence[tuple]) -> bytes:
    out = struct.pack("<BBBHB", 0x40 | local, 0, 0, global_num, len(fields))
    for number, size, base_type, _fmt in fields:
        out += struct.pack("<BBB", number, size, base_type)
    return out


def _data(local: int, fields: Sequence[tuple], values: Sequence[int]) -> bytes:
    fmt = "<B" + "".join(f[3] for f in fields)
    return struct.pack(fmt, local, *values)


def _fit_time(value: dt.datetime) -> int:
    return int((value - FIT_EPOCH).total_seconds())


FILE_ID_FIELDS = [(0, 1, 0x00, "B"), (1, 2, 0x84, "H"), (2, 2, 0x84, "H"), (4, 4, 0x86, "I")]
RECORD_FIELDS = [
    (253, 4, 0x86, "I"),  # timestamp
    (0, 4, 0x85, "i"),  # position_lat
    (1, 4, 0x85, "i"),  # position_long
    (2, 2, 0x84, "H"),  # altitude, scale 5 offset 500
    (3, 1, 0x02, "B"),  # heart_rate
    (4, 1, 0x02, "B"),  # cadence
    (5, 4, 0x86, "I"),  # distance, scale 100
    (6, 2, 0x84, "H"),  # speed, scale 1000
]
SESSION_FIELDS = [(5, 1, 0x00, "B"), (2, 4, 0x86, "I"), (7, 4, 0x86, "I"), (9, 4, 0x86, "I")]


def fit_document(
    n_records: int,
    step_m: float = 10.0,
    step_s: float = 3.0,
    start: dt.datetime = START,
    heart_rate: int = 150,
    sport: str = "running",
) -> bytes:
    """A FIT activity with northbound records, a session and a file id."""
    body = _definition(0, 0, FILE_ID_FIELDS)
    body += _data(0, FILE_ID_FIELDS, [4, 1, 1, _fit_time(start)])
    body += _definition(1, 20, RECORD_FIELDS)
    for i in range(n_records):
        lat = 45.0 + i * step_m * DEG_PER_M
        values = [
            _fit_time(start) + int(i * step_s),
            int(round(lat * 2**31 / 180.0)),
            int(round(5.0 * 2**31 / 180.0)),
            int(round((100.0 + 500.0) * 5)),
            heart_rate,
            85,
            int(round(i * step_m * 100)),
            int(round(step_m / step_s * 1000)),
        ]
        body += _data(1, RECORD_FIELDS, values)
    body += _definition(2, 18, SESSION_FIELDS)
    total_s = (n_records - 1) * step_s
    body += _data(
        2,
        SESSION_FIELDS,
        [SPORTS[sport], _fit_time(start), int(total_s * 1000), int((n_records - 1) * step_m * 100)],
    )
    header = struct.pack("<BBHI4sH", 14, 0x10, 2093, len(body), b".FIT", 0)
    payload = header + body
    return payload + struct.pack("<H", fit_crc(payload))


@pytest.fixture
def make_fit():
    return fit_document
