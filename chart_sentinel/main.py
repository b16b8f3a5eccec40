from __future__ import annotations

import argparse
import asyncio
import logging

from .config import load_config
from .runner import AlertRunner


def _setup_logging(level: str) -> None:
    lvl = getattr(logging, (level or "INFO").upper(), logging.INFO)
    logging.basicConfig(
        level=lvl,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def main(argv=None) -> int:
    p = argparse.ArgumentParser(description="Chart Sentinel - live chart, indicators and AI trade-plan alerts")
    p.add_argument("--config", required=True, help="Path to YAML config")
    p.add_argument("--symbol", help="Override provider.symbol")
    p.add_argument("--interval", choices=["1h", "4h", "1d"], help="Override provider.interval")
    p.add_argument("--auto-refresh", action="store_true", help="Re-run the analysis periodically")
    args = p.parse_args(argv)

    _setup_logging("INFO")
    try:
        cfg = load_config(args.config)
        if args.symbol:
            cfg.provider.symbol = args.symbol.strip().upper()
        if args.interval:
            cfg.provider.interval = args.interval
        if args.auto_refresh:
            cfg.analysis.auto_refresh = True
        runner = AlertRunner(cfg)
    except Exception as e:
        logging.getLogger("main").error("fatal err=%s", e)
        return 1
    logging.getLogger().setLevel(getattr(logging, (cfg.app.log_level or "INFO").upper(), logging.INFO))

    async def _run() -> None:
        try:
            await runner.run_forever()
        finally:
            # Close shared REST session cleanly.
            try:
                await runner.provider.close()
            except Exception as e:
                logging.getLogger("main").warning("provider_close_failed err=%s", e)

    try:
        asyncio.run(_run())
        return 0
    except KeyboardInterrupt:
        return 0
    except Exception as e:
        logging.getLogger("main").exception("fatal err=%s", e)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
