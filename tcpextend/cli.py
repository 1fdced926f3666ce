# tcpextend/cli.py
import argparse
import sys
from pathlib import Path

from .batch import run_batch
from .config import OUTPUT_FORMATS, ROLE_MODES, load_config
from .pipeline import analyze_capture
from .utils import log, setup


def _common_args(p: argparse.ArgumentParser):
    p.add_argument("--config", help="YAML config file (flags below override it)")
    p.add_argument("--format", dest="output_format", choices=OUTPUT_FORMATS)
    p.add_argument("--roles", choices=ROLE_MODES,
                   help="how to decide which endpoint is the client (default: first-seen)")
    p.add_argument("--server-port", dest="server_ports", type=int, action="append",
                   help="known server port for --roles port (repeatable)")
    p.add_argument("--absolute-seq", dest="relative_seq", action="store_const", const=False,
                   help="feed absolute instead of relative sequence numbers")
    p.add_argument("--only-flagged", dest="only_flagged", action="store_const", const=True,
                   help="only output packets carrying an advisory flag")
    p.add_argument("--log-dir", dest="log_dir")
    p.add_argument("--verbose", action="store_true")


def _config_from_args(args):
    return load_config(
        args.config,
        output_format=args.output_format,
        roles=args.roles,
        server_ports=args.server_ports,
        relative_seq=args.relative_seq,
        only_flagged=args.only_flagged,
        log_dir=args.log_dir,
        log_level="DEBUG" if args.verbose else None,
    )


def main(argv=None) -> int:
    p = argparse.ArgumentParser(prog="tcpextend", description="Extended per-packet TCP metrics for a capture")
    p.add_argument("-i", "--input", required=True, help="pcap / pcapng file")
    p.add_argument("-o", "--output", help="output file (default: stdout)")
    p.add_argument("--stream", type=int, help="only output this stream id")
    _common_args(p)
    args = p.parse_args(argv)

    try:
        cfg = _config_from_args(args)
    except ValueError as e:
        p.error(str(e))
    setup(log_dir=cfg.log_dir, level=cfg.log_level)

    try:
        stats = analyze_capture(
            args.input,
            args.output,
            cfg,
            stream_id=args.stream,
            out=None if args.output else sys.stdout,
            show_progress=args.verbose,
        )
    except (OSError, ValueError) as e:
        log.error(f"{args.input}: {e}")
        return 2
    log.info(f"{args.input}: segments={stats.get('segments', 0)} streams={stats.get('streams', 0)} "
             f"flagged={stats.get('flagged', 0)} written={stats.get('written', 0)}")
    return 0


def batch_main(argv=None) -> int:
    p = argparse.ArgumentParser(prog="tcpextend-batch", description="Run tcpextend over a directory of captures")
    p.add_argument("--in-root", required=True)
    p.add_argument("--out-root", required=True)
    p.add_argument("--backend", choices=["threads", "processes"], default="threads")
    p.add_argument("--workers", type=int, default=4)
    p.add_argument("--limit", type=int, default=None)
    p.add_argument("--resume", action="store_true", help="Skip captures whose output already exists")
    _common_args(p)
    args = p.parse_args(argv)

    try:
        cfg = _config_from_args(args)
    except ValueError as e:
        p.error(str(e))
    setup(log_dir=cfg.log_dir, level=cfg.log_level)

    in_root = Path(args.in_root).resolve()
    out_root = Path(args.out_root).resolve()
    out_root.mkdir(parents=True, exist_ok=True)

    results = run_batch(in_root, out_root, cfg, backend=args.backend, workers=args.workers,
                        limit=args.limit, resume=args.resume, verbose=args.verbose)
    failed = sum(1 for r in results if r.get("status") == "error")
    log.info(f"{len(results)} captures, {failed} failed; summary in {out_root / 'summary.json'}")
    return 1 if failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
