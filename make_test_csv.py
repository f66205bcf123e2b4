#!/usr/bin/env python3
"""
Generate a CSV export of CAN bus traffic in the layout the viewer reads.

Each row looks like:
Time,Source,Target,Name,Buffer,Meaning
2025-01-01 12:00:00.000,HostCtrl,TubeCtrl,,string=2cf:8:[10 40 ff 37 48 c1 0a 00],Reply Thermal State

No third-party dependencies.
"""

import io
import csv
import datetime

# ----------------------------------------------------------
# USER CONFIG
# ----------------------------------------------------------

# Number of rows to generate
NUM_ROWS = 400

# Time between two rows, milliseconds
INTERVAL_MS = 25

# Heat units start value (percent) for the thermal state replies
HUR_START = 12.5

# Output file
OUT_FILE = "example_can_log.csv"

HEADERS = ["Time", "Source", "Target", "Name", "Buffer", "Meaning"]

# ----------------------------------------------------------
# HELPER FUNCTIONS
# ----------------------------------------------------------


def build_buffer(message_id: int, payload: bytes) -> str:
    """Buffer cell text: string=<hex id>:<length>:[<bytes>]"""
    data = " ".join(f"{value:02x}" for value in payload)
    return f"string={message_id:x}:{len(payload)}:[{data}]"


def thermal_state_payload(index: int, hur_percent: float, counter: int) -> bytes:
    """
    0x2CF Reply Thermal State.

    byte 0   : index (0x10/0x20 anode, 0x11/0x21 casing)
    byte 1   : status bits
    bytes 2-4: raw temperature, little-endian
    bytes 5-6: HUR in 0.01 %, little-endian
    byte 7   : reserved
    """
    hur_raw = int(round(hur_percent * 100)) & 0xFFFF
    temperature = (0x37FF40 + counter * 7) & 0xFFFFFF
    return bytes(
        [
            index & 0xFF,
            0x40,
            temperature & 0xFF,
            (temperature >> 8) & 0xFF,
            (temperature >> 16) & 0xFF,
            hur_raw & 0xFF,
            (hur_raw >> 8) & 0xFF,
            0x00,
        ]
    )


def heartbeat_payload(counter: int) -> bytes:
    return bytes([0x05, counter & 0xFF])


def generate_rows(num_rows=NUM_ROWS, start_time=None, interval_ms=INTERVAL_MS, hur_start=HUR_START):
    if start_time is None:
        start_time = datetime.datetime(2025, 1, 1, 12, 0, 0)
    indexes = [0x10, 0x11, 0x20, 0x21]
    rows = []
    for i in range(num_rows):
        stamp = start_time + datetime.timedelta(milliseconds=i * interval_ms)
        time_text = stamp.strftime("%Y-%m-%d %H:%M:%S.") + f"{stamp.microsecond // 1000:03d}"
        kind = i % 5
        if kind in (0, 1, 2):
            index = indexes[i % len(indexes)]
            hur = hur_start + (i // 5) * 0.25
            if index in (0x11, 0x21):
                hur = hur / 2
            buffer = build_buffer(0x2CF, thermal_state_payload(index, hur, i))
            rows.append([time_text, "HostCtrl", "TubeCtrl", "", buffer, "Reply Thermal State"])
        elif kind == 3:
            buffer = build_buffer(0x701, heartbeat_payload(i))
            rows.append([time_text, "TubeCtrl", "HostCtrl", "", buffer, "Heartbeat"])
        else:
            rows.append([time_text, "Console", "HostCtrl", "RTB", "", "Ready To Begin"])
    return rows


def write_csv(handle, rows):
    writer = csv.writer(handle)
    writer.writerow(HEADERS)
    writer.writerows(rows)


def build_csv_bytes(num_rows=NUM_ROWS, start_time=None, interval_ms=INTERVAL_MS):
    output = io.StringIO()
    write_csv(output, generate_rows(num_rows, start_time, interval_ms))
    buffer = io.BytesIO(output.getvalue().encode("utf-8"))
    buffer.seek(0)
    return buffer


# ----------------------------------------------------------
# MAIN: generate CSV
# ----------------------------------------------------------

def main():
    rows = generate_rows()
    with open(OUT_FILE, "w", encoding="utf-8", newline="") as f:
        write_csv(f, rows)
    print(f"Written {len(rows)} rows to {OUT_FILE}")


if __name__ == "__main__":
    main()
