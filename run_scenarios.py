#!/usr/bin/env python3
import argparse
import os
import platform
import signal
import subprocess
import sys
import time

import psutil

import generate_statistics

PYTHON_CMD = sys.executable
HERE = os.path.dirname(os.path.abspath(__file__))
NUM_CLIENTS = 2

# (name, netem arguments or None)
SCENARIOS = [
    ("baseline", None),
    ("loss2", "loss 2%"),
    ("loss5", "loss 5%"),
    ("delay100", "delay 100ms"),
]

# ------------------------
# NETWORK IMPAIRMENT FUNCTIONS
# ------------------------
def apply_netem(iface, netem_args):
    cmd = f"sudo tc qdisc add dev {iface} root netem {netem_args}"
    subprocess.run(cmd, shell=True, check=True)
    print(f"[INFO] Applied netem '{netem_args}' on {iface}")


def clear_netem(iface):
    cmd = f"sudo tc qdisc del dev {iface} root"
    subprocess.run(cmd, shell=True, check=True)
    print(f"[INFO] Cleared netem on {iface}")

# ------------------------
# SERVER FUNCTIONS
# ------------------------
def start_server(port, results_dir, scenario):
    print("[INFO] Starting server...")
    cmd = [PYTHON_CMD, os.path.join(HERE, "server.py"), "--port", str(port),
           "--log-dir", os.path.join(results_dir, f"server_{scenario}"), "--quiet"]
    if platform.system() == "Windows":
        server = subprocess.Popen(cmd, creationflags=subprocess.CREATE_NEW_PROCESS_GROUP)
    else:
        server = subprocess.Popen(cmd, start_new_session=True)
    time.sleep(1.0)
    print("[INFO] Server PID:", server.pid)
    return server


def stop_server(server_proc):
    if platform.system() == "Windows":
        server_proc.send_signal(signal.CTRL_BREAK_EVENT)
    else:
        os.killpg(os.getpgid(server_proc.pid), signal.SIGTERM)
    try:
        server_proc.wait(timeout=5)
    except subprocess.TimeoutExpired:
        server_proc.kill()

# ------------------------
# CLIENT FUNCTIONS
# ------------------------
def start_client(client_index, port, duration, results_dir, scenario):
    output_file = os.path.join(results_dir, f"client_metrics_{scenario}_{client_index}.csv")
    cmd = [PYTHON_CMD, os.path.join(HERE, "headless_client.py"), "--port", str(port),
           "--name", f"Bot{client_index}", "--duration", str(duration),
           "--scenario", scenario, "--output-csv", output_file, "--quiet"]
    print(f"[INFO] Starting client {client_index}...")
    return subprocess.Popen(cmd)

# ------------------------
# CPU MONITORING
# ------------------------
def collect_cpu_usage(server_pid, duration):
    process = psutil.Process(server_pid)
    cpu_samples = []
    start = time.time()
    print("[INFO] Tracking server CPU usage...")
    while time.time() - start < duration:
        time.sleep(1)
        try:
            cpu_samples.append(process.cpu_percent(interval=None))
        except psutil.NoSuchProcess:
            break
    return sum(cpu_samples) / len(cpu_samples) if cpu_samples else 0.0

# ------------------------
# RUN SCENARIO
# ------------------------
def run_scenario(scenario, port, duration, results_dir):
    print(f"\n\n=== RUNNING SCENARIO: {scenario} ===")
    server_proc = start_server(port, results_dir, scenario)
    client_procs = []
    try:
        for cid in range(NUM_CLIENTS):
            client_procs.append(start_client(cid, port, duration, results_dir, scenario))
            time.sleep(0.2)   # keep join order deterministic
        cpu_avg = collect_cpu_usage(server_proc.pid, duration)
        for p in client_procs:
            p.wait(timeout=duration + 10)
    finally:
        print("[INFO] Stopping server...")
        stop_server(server_proc)

    with open(os.path.join(results_dir, f"cpu_usage_{scenario}.txt"), "w") as f:
        f.write(f"Average Server CPU Usage: {cpu_avg:.2f}%\n")
    print(f"=== SCENARIO {scenario} COMPLETE ===")


def main(argv=None):
    parser = argparse.ArgumentParser(description="Run the relay under local test scenarios")
    parser.add_argument("--port", type=int, default=6000)
    parser.add_argument("--duration", type=float, default=10)
    parser.add_argument("--results-dir", default="results")
    parser.add_argument("--iface", default=None,
                        help="Interface for tc netem impairment; without it only the baseline runs")
    args = parser.parse_args(argv)
    os.makedirs(args.results_dir, exist_ok=True)

    for scenario, netem_args in SCENARIOS:
        if netem_args is None:
            run_scenario(scenario, args.port, args.duration, args.results_dir)
            continue
        if args.iface is None:
            print(f"[INFO] Skipping {scenario} (no --iface given)")
            continue
        try:
            apply_netem(args.iface, netem_args)
            run_scenario(scenario, args.port, args.duration, args.results_dir)
        finally:
            clear_netem(args.iface)

    return generate_statistics.main(["--results-dir", args.results_dir])


if __name__ == "__main__":
    sys.exit(main())
