import argparse
import csv
import math
import signal
import sys
import threading
import time

import psutil

from protocol_constants import *
from protocol_codec import Chat, GameStarted, JoinRejected, ReadyToStart, ServerClosed, encode
from client import ClientSession, ConnectionLost
from client_utils import position_error, smooth_towards, snapshot_position
from relay_errors import IllegalTransition
from server_utils import current_time_ms, log_message, set_quiet

FRAME_HZ = 60
SMOOTHING_RATE = 10.0      # fraction of the gap closed per second, scaled by dt
WALK_RADIUS = 5.0
WALK_SPEED = 0.8           # radians per second

METRIC_FIELDS = [
    'client_id', 'scenario', 'snapshot_seq', 'recv_time_ms', 'interarrival_ms',
    'jitter_ms', 'perceived_position_error', 'cpu_percent', 'bandwidth_kbps',
]

metrics = []
metrics_lock = threading.Lock()
stop_event = threading.Event()
output_csv_path = None


def save_metrics():
    """Save metrics to CSV - called on exit"""
    if not output_csv_path:
        return
    with metrics_lock:
        rows = list(metrics)
    try:
        with open(output_csv_path, 'w', newline='') as f:
            writer = csv.DictWriter(f, fieldnames=METRIC_FIELDS)
            writer.writeheader()
            writer.writerows(rows)
        log_message(f"[CLIENT] Saved {len(rows)} metrics to {output_csv_path}")
    except OSError as e:
        log_message(f"[CLIENT] Error saving metrics: {e}")


def signal_handler(sig, frame):
    """Handle termination signals gracefully"""
    log_message(f"[CLIENT] Received signal {sig}, shutting down...")
    stop_event.set()


def walk_position(player_id, elapsed):
    """Each bot walks its own circle so the two streams are distinguishable."""
    phase = elapsed * WALK_SPEED + (math.pi if player_id == 2 else 0.0)
    x = WALK_RADIUS * math.cos(phase)
    z = WALK_RADIUS * math.sin(phase)
    rot_y = math.degrees(phase + math.pi / 2) % 360.0
    return x, 0.0, z, rot_y


class SnapshotTracker:
    """Turns the stream of remote snapshots into per-sample metric rows."""

    def __init__(self, client_id, scenario):
        self.client_id = client_id
        self.scenario = scenario
        self.last_snapshot = None
        self.last_recv_ms = None
        self.last_interarrival = None
        self.smoothed = None
        self.seq = 0

    def observe(self, snapshot, recv_ms):
        if snapshot is None or snapshot is self.last_snapshot:
            return None
        target = snapshot_position(snapshot)
        if self.smoothed is None:
            self.smoothed = target
        error = position_error(self.smoothed, target)
        interarrival = recv_ms - self.last_recv_ms if self.last_recv_ms is not None else 0
        jitter = abs(interarrival - self.last_interarrival) if self.last_interarrival is not None else 0

        self.seq += 1
        self.last_snapshot = snapshot
        if self.last_recv_ms is not None:
            self.last_interarrival = interarrival
        self.last_recv_ms = recv_ms

        try:
            cpu_percent = psutil.cpu_percent(interval=None)
        except psutil.Error:
            cpu_percent = 0.0
        wire_bytes = len(encode(snapshot))
        return {
            'client_id': self.client_id,
            'scenario': self.scenario,
            'snapshot_seq': self.seq,
            'recv_time_ms': recv_ms,
            'interarrival_ms': interarrival,
            'jitter_ms': jitter,
            'perceived_position_error': error,
            'cpu_percent': cpu_percent,
            'bandwidth_kbps': wire_bytes * 8 * DEFAULT_SNAPSHOT_RATE_HZ / 1000,
        }

    def advance(self, dt):
        if self.smoothed is not None and self.last_snapshot is not None:
            self.smoothed = smooth_towards(self.smoothed, snapshot_position(self.last_snapshot),
                                           dt * SMOOTHING_RATE)


def run_bot(client, duration, scenario, auto_start=True):
    """Drive one ClientSession for `duration` seconds. Returns the final stats dict."""
    if not client.connect():
        return client.stats()

    frame = 1.0 / FRAME_HZ
    start_time = time.monotonic()
    game_start_time = None
    tracker = None
    last_frame = start_time

    while not stop_event.is_set() and time.monotonic() - start_time < duration:
        now = time.monotonic()
        dt = now - last_frame
        last_frame = now

        if game_start_time is not None:
            client.update_local_state(*walk_position(client.player_id, now - game_start_time))

        for event in client.tick(now):
            if isinstance(event, ReadyToStart) and auto_start:
                try:
                    client.request_start()
                except IllegalTransition as e:
                    log_message(f"[CLIENT] Cannot request start: {e}")
            elif isinstance(event, GameStarted):
                game_start_time = now
                tracker = SnapshotTracker(client.player_id, scenario)
            elif isinstance(event, Chat):
                log_message(f"[CLIENT] {event.text}")
            elif isinstance(event, (ServerClosed, JoinRejected, ConnectionLost)):
                stop_event.set()

        if tracker is not None:
            row = tracker.observe(client.remote_snapshot, current_time_ms())
            if row is not None:
                with metrics_lock:
                    metrics.append(row)
                if row['snapshot_seq'] % 40 == 0:
                    log_message(f"[CLIENT] {scenario}: {row['snapshot_seq']} snapshots, "
                                f"interarrival={row['interarrival_ms']}ms, "
                                f"error={row['perceived_position_error']:.3f}")
            tracker.advance(dt)

        time.sleep(max(0.0, frame - (time.monotonic() - now)))

    stats = client.stats()
    client.disconnect()
    log_message(f"[CLIENT] Final stats: {stats}")
    return stats


def main(argv=None):
    global output_csv_path
    parser = argparse.ArgumentParser(description="Headless bot client for relay testing")
    parser.add_argument("--server-ip", type=str, default=DEFAULT_SERVER_IP)
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument("--name", type=str, default="Bot")
    parser.add_argument("--duration", type=float, default=10)
    parser.add_argument("--scenario", type=str, default="baseline")
    parser.add_argument("--output-csv", type=str, default=None)
    parser.add_argument("--no-auto-start", action="store_true")
    parser.add_argument("--quiet", action="store_true")
    args = parser.parse_args(argv)

    output_csv_path = args.output_csv
    set_quiet(args.quiet)
    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    client = ClientSession((args.server_ip, args.port), args.name)
    try:
        stats = run_bot(client, args.duration, args.scenario, auto_start=not args.no_auto_start)
    finally:
        client.disconnect()
        save_metrics()
        log_message("[CLIENT] Test completed")
    return 0 if stats['player_id'] is not None else 1


if __name__ == "__main__":
    sys.exit(main())
