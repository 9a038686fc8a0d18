"""CLI entrypoint: analyze a URL, run discovery, trigger pull runs, check health."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any, Dict

import uvicorn

from config import get_settings
from core import Source
from utils.exceptions import RadarError, UnauthorizedError
from utils.logger import configure_logging
from webapp.runtime import RadarRuntime, build_runtime


def _print(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Demand Radar CLI")
    parser.add_argument("--log-level", default=None, help="覆盖 LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    analyze = sub.add_parser("analyze-url", help="分析单个 URL 并保存")
    analyze.add_argument("url")

    discover = sub.add_parser("discover", help="只运行发现, 不分析")
    discover.add_argument("--entry-url", default=None, help="HN 列表接口, 默认 askstories.json")
    discover.add_argument("--limit", type=int, default=20)

    sub.add_parser("pull-now", help="立即运行一次拉取")

    cron = sub.add_parser("cron", help="模拟定时触发")
    cron.add_argument("--secret", required=True)

    unlock = sub.add_parser("unlock", help="强制释放拉取锁")
    unlock.add_argument("--secret", required=True)

    sub.add_parser("health", help="自动化健康状态")

    serve = sub.add_parser("serve", help="启动 HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true")
    return parser


async def _run(args: argparse.Namespace, runtime: RadarRuntime) -> Dict[str, Any]:
    if args.command == "analyze-url":
        record = await runtime.pipeline.analyze_and_store(
            args.url,
            runtime.stores.analyses,
            options=runtime.analyze_options(),
        )
        return record.model_dump(mode="json")

    if args.command == "discover":
        entry_url = args.entry_url or f"{runtime.scraper.firebase_url}/askstories.json"
        source = Source(id="cli", name="cli", entry_url=entry_url, discover_limit=max(1, args.limit))
        results = await runtime.scraper.discover(source)
        return {"items": [item.model_dump(mode="json") for item in results]}

    if args.command == "pull-now":
        return (await runtime.triggers.pull_now()).to_dict()

    if args.command == "cron":
        return (await runtime.triggers.run_cron(args.secret)).to_dict()

    if args.command == "unlock":
        runtime.triggers.force_unlock(args.secret)
        return {"ok": True}

    return runtime.automation_health()


async def _main(args: argparse.Namespace) -> int:
    runtime = build_runtime()
    try:
        _print(await _run(args, runtime))
        return 0
    except UnauthorizedError as exc:
        _print({"error": str(exc)})
        return 2
    except RadarError as exc:
        _print({"error": str(exc)})
        return 1
    finally:
        await runtime.aclose()


def main() -> None:
    args = build_parser().parse_args()
    settings = get_settings()
    configure_logging(
        level=args.log_level or settings.log.level,
        log_file=settings.log.file,
        use_rich=settings.log.use_rich,
    )
    if args.command == "serve":
        uvicorn.run("webapp.app:app", host=args.host, port=args.port, reload=args.reload)
        return
    sys.exit(asyncio.run(_main(args)))


if __name__ == "__main__":
    main()
