from __future__ import annotations

import argparse
import os
import time
import uuid

from app import create_app
from app.observability import bind_request_id
from app.scheduler import run_expiry_sweep


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Worker de expiracao das solicitacoes em BIDDING.")
    parser.add_argument("--once", action="store_true", help="Executa uma varredura unica e encerra.")
    parser.add_argument("--limit", type=int, default=0, help="Quantidade maxima de solicitacoes por varredura.")
    parser.add_argument("--interval", type=int, default=0, help="Intervalo em segundos entre varreduras.")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    os.environ.setdefault("EXPIRY_SWEEP_ENABLED", "false")
    os.environ.setdefault("DB_AUTO_INIT", "false")
    app = create_app()

    configured_limit = int(app.config.get("EXPIRY_SWEEP_LIMIT", 200) or 200)
    configured_interval = int(app.config.get("EXPIRY_SWEEP_INTERVAL_SECONDS", 300) or 300)
    limit = max(1, int(args.limit or configured_limit))
    interval_seconds = max(1, int(args.interval or configured_interval))

    while True:
        with bind_request_id(f"worker-{uuid.uuid4().hex[:12]}"):
            run_expiry_sweep(app, limit=limit)
        if args.once:
            break
        time.sleep(interval_seconds)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
