"""
主程序入口

加载配置 -> 配置日志 -> 执行一次对账 -> 上报结果。
致命错误时以退出码 1 结束。
"""

import argparse
import asyncio
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional

import httpx

from . import __version__
from .config import AppConfig, LoggingConfig, load_config
from .errors import AggregatorError
from .graphql import GraphQLClient
from .pipeline import RunResult, run_pipeline
from .publisher import EventPublisher

logger = logging.getLogger(__name__)


def setup_logging(config: LoggingConfig, level_override: Optional[str] = None):
    """配置日志"""
    # 日志格式
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # 获取日志级别
    level_name = (level_override or config.level).upper()
    level = getattr(logging, level_name, logging.INFO)

    # 配置根日志
    logging.basicConfig(
        level=level,
        format=log_format,
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # 如果配置了文件日志
    if config.file:
        log_path = Path(config.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            str(log_path),
            maxBytes=config.max_size_mb * 1024 * 1024,
            backupCount=config.backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(logging.Formatter(log_format))
        logging.getLogger().addHandler(file_handler)

    # 降低第三方库日志级别
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


async def run(config: AppConfig, dry_run: bool = False) -> RunResult:
    """创建 HTTP 客户端并执行一次对账"""
    credentials = config.credentials
    if not credentials.user_key:
        logger.warning("NEW_RELIC_USER_KEY is not set; NerdGraph requests will be rejected")

    timeout = httpx.Timeout(config.api.timeout)
    async with httpx.AsyncClient(timeout=timeout) as http:
        client = GraphQLClient(http, config.api.graphql_url, credentials.user_key)
        publisher = None
        if not dry_run:
            publisher = EventPublisher(http, config.events_endpoint, credentials.ingest_key)
        return await run_pipeline(config, client, publisher, dry_run=dry_run)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="agent-version-aggregator",
        description="Report monitored entities running outdated agent versions",
    )
    parser.add_argument("-c", "--config", help="Path to config.yaml")
    parser.add_argument("--dry-run", action="store_true", help="Reconcile without publishing events")
    parser.add_argument("--log-level", help="Override logging level (DEBUG, INFO, ...)")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """主函数，返回退出码"""
    args = parse_args(argv)

    try:
        config = load_config(args.config)
    except AggregatorError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    setup_logging(config.logging, args.log_level)
    logger.info(f"Agent Version Aggregator v{__version__}")
    logger.info(
        f"Checking {len(config.agents)} agents across "
        f"{', '.join(d.value for d in config.domains)}"
    )

    try:
        result = asyncio.run(run(config, dry_run=args.dry_run))
    except AggregatorError as e:
        logger.error(f"Run failed at stage {e.stage}: {e}")
        return 1
    except httpx.HTTPError as e:
        logger.error(f"Run failed with transport error: {e}", exc_info=True)
        return 1

    if result.failed_agents:
        logger.warning(f"Release data unavailable for: {', '.join(result.failed_agents)}")
    logger.info(
        f"Done: {result.entity_count} entities checked, "
        f"{len(result.records)} outdated, published={result.published}"
    )
    return 0


def cli():
    """命令行入口"""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nInterrupted, exiting...")
        sys.exit(130)


if __name__ == "__main__":
    cli()
