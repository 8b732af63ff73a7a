import argparse
import signal
import threading

from protocol_constants import DEFAULT_PORT, DEFAULT_SERVER_NAME, SERVER_POLL_INTERVAL
from game_server import RelayServer
from session_registry import SessionRegistry
from server_utils import log_message, open_server_socket, set_quiet


def build_parser():
    parser = argparse.ArgumentParser(description="Two-player UDP relay server")
    parser.add_argument("--host", type=str, default="0.0.0.0", help="Bind address")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="UDP port to listen on")
    parser.add_argument("--name", type=str, default=DEFAULT_SERVER_NAME, help="Room name shown in logs")
    parser.add_argument("--idle-timeout", type=float, default=None,
                        help="Evict peers silent for this many seconds (default: never)")
    parser.add_argument("--reset-on-leave", action="store_true",
                        help="Reopen a started room when a player leaves")
    parser.add_argument("--silent-reject", action="store_true",
                        help="Ignore joins to a full room instead of answering ROOM_FULL")
    parser.add_argument("--log-dir", type=str, default=None, help="Write CSV traffic logs here on shutdown")
    parser.add_argument("--quiet", action="store_true")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    set_quiet(args.quiet)

    stop_event = threading.Event()

    def signal_handler(sig, frame):
        log_message(f"[SERVER] Received signal {sig}, shutting down...")
        stop_event.set()

    signal.signal(signal.SIGTERM, signal_handler)

    sock = open_server_socket(args.host, args.port)
    server = RelayServer(
        sock,
        registry=SessionRegistry(),
        server_name=args.name,
        idle_timeout=args.idle_timeout,
        reset_on_leave=args.reset_on_leave,
        announce_rejections=not args.silent_reject,
        log_dir=args.log_dir,
    )
    log_message(f"[SERVER] Listening on {args.host}:{args.port}")
    server.run(stop_event=stop_event, poll_interval=SERVER_POLL_INTERVAL)


if __name__ == "__main__":
    main()
