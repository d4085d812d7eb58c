"""CLI 入口模块 - Trade Guardian 命令行接口。"""

import json
import sys
import time
from dataclasses import asdict

import click

from trade_guardian import __version__
from trade_guardian.broker.base import BrokerError, BrokerGateway
from trade_guardian.broker.metaapi import MetaApiBroker
from trade_guardian.broker.paper import PaperBroker
from trade_guardian.config import Settings, get_settings
from trade_guardian.engine import Engine
from trade_guardian.journal.store import EVENT_TYPES, JournalStore
from trade_guardian.ledger.base import LedgerError
from trade_guardian.ledger.store import JsonTradeLedger
from trade_guardian.schemas import BrokerAccount, TradingPlan
from trade_guardian.utils.logging import get_logger, setup_logging


def build_broker(settings: Settings) -> BrokerGateway:
    """根据运行模式创建券商网关。"""
    if settings.is_live_mode:
        return MetaApiBroker(settings)
    return PaperBroker(settings.ledger_dir)


def build_engine(settings: Settings) -> Engine:
    """组装账本、券商网关和审计日志。"""
    settings.ensure_directories()
    return Engine(
        settings,
        JsonTradeLedger(settings.ledger_dir),
        build_broker(settings),
        journal=JournalStore(settings.journal_dir),
    )


def _resolve_account(settings: Settings, user_id: str, account_id: str | None) -> str:
    """命令行参数 > 配置 > 账本中已绑定的账户。"""
    if account_id:
        return account_id
    if settings.account_id:
        return settings.account_id
    account = JsonTradeLedger(settings.ledger_dir).get_account(user_id)
    return account.account_id if account else ""


def _require_live_config(settings: Settings) -> None:
    if not settings.is_live_mode:
        return
    missing = settings.validate_for_live()
    if missing:
        get_logger("trade_guardian.main").error(
            "missing_required_config",
            missing_keys=missing,
            hint="请在 .env 文件中配置 METAAPI_TOKEN",
        )
        sys.exit(1)


user_option = click.option("--user", "-u", "user_id", default=None, help="用户 ID（默认取配置）")
account_option = click.option("--account", "-a", "account_id", default=None, help="券商账户 ID")


@click.group(invoke_without_command=True)
@click.option("--version", "-v", is_flag=True, help="显示版本号")
@click.pass_context
def cli(ctx: click.Context, version: bool) -> None:
    """Trade Guardian - 交易纪律执行器。

    定期同步券商持仓，按交易计划检查每个持仓，并强制平仓违规持仓。
    """
    if version:
        click.echo(f"trade-guardian version {__version__}")
        return

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command()
@click.option("--login", required=True, help="MT5 登录账号")
@click.option("--password", required=True, prompt=True, hide_input=True, help="MT5 密码")
@click.option("--server", "server_name", required=True, help="MT5 服务器名称")
@user_option
def connect(login: str, password: str, server_name: str, user_id: str | None) -> None:
    """开通并部署券商账户，绑定到用户。"""
    setup_logging()
    settings = get_settings()
    _require_live_config(settings)
    user_id = user_id or settings.user_id
    try:
        account = build_engine(settings).connect_account(user_id, login, password, server_name)
    except (BrokerError, LedgerError) as e:
        get_logger("trade_guardian.main").error("connect_failed", error=str(e))
        sys.exit(1)
    click.echo(f"[OK] Connected account {account.account_id} for user {user_id}")


@cli.group()
def plan() -> None:
    """管理交易计划。"""


@plan.command("set")
@user_option
@click.option("--max-trades", type=int, default=5, show_default=True, help="每日最大交易数")
@click.option("--max-risk", type=float, default=2.0, show_default=True, help="单笔风险上限（%）")
@click.option("--symbols", default="", help="允许的品种，逗号分隔；为空表示全部允许")
@click.option("--session-start", default="09:00", show_default=True, help="交易时段开始 HH:MM")
@click.option("--session-end", default="17:00", show_default=True, help="交易时段结束 HH:MM")
@click.option("--max-daily-loss", type=float, default=5.0, show_default=True, help="每日亏损上限")
def plan_set(
    user_id: str | None,
    max_trades: int,
    max_risk: float,
    symbols: str,
    session_start: str,
    session_end: str,
    max_daily_loss: float,
) -> None:
    """保存新的交易计划并设为唯一生效计划。"""
    setup_logging()
    settings = get_settings()
    settings.ensure_directories()
    try:
        trading_plan = TradingPlan(
            user_id=user_id or settings.user_id,
            max_trades_per_day=max_trades,
            max_risk_percent=max_risk,
            allowed_symbols=symbols.split(",") if symbols else [],
            session_start=session_start,
            session_end=session_end,
            max_daily_loss_percent=max_daily_loss,
        )
    except ValueError as e:
        raise click.BadParameter(str(e)) from e
    JsonTradeLedger(settings.ledger_dir).save_plan(trading_plan)
    click.echo(f"[OK] Active plan saved for user {trading_plan.user_id}")


@plan.command("show")
@user_option
def plan_show(user_id: str | None) -> None:
    """显示当前生效的交易计划。"""
    settings = get_settings()
    user_id = user_id or settings.user_id
    active = JsonTradeLedger(settings.ledger_dir).get_active_plan(user_id)
    if active is None:
        click.echo(f"[--] No active plan for user {user_id}")
        return
    symbols = ", ".join(active.allowed_symbols) or "ALL"
    click.echo(f"Plan for {user_id}")
    click.echo(f"   Session: {active.session_start:%H:%M} - {active.session_end:%H:%M}")
    click.echo(f"   Allowed symbols: {symbols}")
    click.echo(f"   Max trades per day: {active.max_trades_per_day}")
    click.echo(f"   Max risk per trade: {active.max_risk_percent}% (not enforced)")
    click.echo(f"   Max daily loss: {active.max_daily_loss_percent}")


@cli.command()
@user_option
@account_option
def sync(user_id: str | None, account_id: str | None) -> None:
    """手动同步券商持仓与历史成交到账本。"""
    setup_logging()
    logger = get_logger("trade_guardian.main")
    settings = get_settings()
    _require_live_config(settings)
    user_id = user_id or settings.user_id
    account_id = _resolve_account(settings, user_id, account_id)

    result = build_engine(settings).sync(user_id, account_id)
    logger.info("sync_finished", **asdict(result))
    if result.status in {"no_account", "broker_unavailable", "ledger_unavailable"}:
        sys.exit(1)


@cli.command()
@user_option
@account_option
def once(user_id: str | None, account_id: str | None) -> None:
    """执行单次监控循环。

    同步 → 逐个持仓检查规则 → 强制平仓违规持仓 → 记录结果
    """
    setup_logging()
    logger = get_logger("trade_guardian.main")
    settings = get_settings()
    _require_live_config(settings)
    user_id = user_id or settings.user_id
    account_id = _resolve_account(settings, user_id, account_id)

    try:
        result = build_engine(settings).monitor(user_id, account_id)
    except KeyboardInterrupt:
        logger.info("run_interrupted", message="User interrupted")
        sys.exit(0)
    except Exception as e:
        logger.exception("run_failed", error=str(e))
        sys.exit(1)

    logger.info(
        "run_completed",
        status=result.status,
        checked=result.checked,
        violated=result.violated,
        details=[asdict(d) for d in result.details],
        warnings=result.warnings,
        elapsed_ms=round(result.elapsed_ms, 2),
    )
    if result.status != "ok":
        sys.exit(1)


@cli.command()
@user_option
@account_option
@click.option(
    "--interval-sec",
    "-i",
    type=int,
    default=None,
    help="循环间隔（秒），默认取配置",
)
def loop(user_id: str | None, account_id: str | None, interval_sec: int | None) -> None:
    """持续监控，直到 Ctrl+C。"""
    setup_logging()
    logger = get_logger("trade_guardian.main")
    settings = get_settings()
    _require_live_config(settings)
    if interval_sec is not None:
        settings = settings.model_copy(update={"monitor_interval_sec": interval_sec})
    user_id = user_id or settings.user_id
    account_id = _resolve_account(settings, user_id, account_id)

    engine = build_engine(settings)
    logger.info(
        "starting_loop",
        mode=settings.mode.value,
        user_id=user_id,
        account_id=account_id,
        interval_sec=settings.monitor_interval_sec,
    )
    scheduler = engine.start_monitoring(user_id, account_id)
    try:
        while scheduler.is_running:
            time.sleep(1)
    except KeyboardInterrupt:
        engine.stop_monitoring()
        scheduler.join()
        logger.info("loop_stopped", message="User stopped loop", total_ticks=scheduler.ticks)


@cli.command()
@user_option
@click.option("--limit", "-n", type=int, default=20, show_default=True, help="显示条数")
def trades(user_id: str | None, limit: int) -> None:
    """列出账本中的交易记录。"""
    settings = get_settings()
    user_id = user_id or settings.user_id
    records = JsonTradeLedger(settings.ledger_dir).list_trades(user_id)[:limit]
    if not records:
        click.echo(f"[--] No trades recorded for user {user_id}")
        return
    for r in records:
        state = "OPEN" if r.is_open else "CLOSED"
        flag = "OK" if r.follows_rules else "VIOLATION"
        line = f"{r.opened_at:%Y-%m-%d %H:%M} {r.trade_id} {r.symbol} {r.side} {r.volume} {state} {flag}"
        if r.auto_close_reason:
            line += f" ({r.auto_close_reason})"
        click.echo(line)


@cli.command()
@click.option("--limit", "-n", type=int, default=20, show_default=True, help="显示条数")
@click.option(
    "--event",
    "-e",
    "event_types",
    multiple=True,
    type=click.Choice(sorted(EVENT_TYPES)),
    help="只显示指定事件类型，可重复",
)
def journal(limit: int, event_types: tuple[str, ...]) -> None:
    """查看最近的审计事件。"""
    settings = get_settings()
    events = JournalStore(settings.journal_dir).recent_events(limit, event_types)
    if not events:
        click.echo("[--] No journal events")
        return
    for event in events:
        payload = json.dumps(event.get("payload", {}), ensure_ascii=False, sort_keys=True)
        click.echo(f"{event.get('timestamp', '-')} {event.get('event_type', '-')} {payload}")


@cli.command()
def status() -> None:
    """显示系统状态和配置摘要。"""
    settings = get_settings()

    click.echo("=" * 50)
    click.echo("Trade Guardian - Status")
    click.echo("=" * 50)
    click.echo()

    mode_marker = "[PAPER]" if settings.is_paper_mode else "[LIVE]"
    mode_text = "Paper broker" if settings.is_paper_mode else "MetaApi"
    click.echo(f"{mode_marker} Mode: {mode_text}")
    click.echo()

    click.echo("[Broker]")
    token_status = "[OK] Configured" if settings.metaapi_token else "[--] Not configured"
    click.echo(f"   MetaApi token: {token_status}")
    click.echo(f"   Timeout: {settings.broker_timeout_sec}s, attempts: {settings.broker_max_retries}")
    click.echo()

    click.echo("[Monitoring]")
    click.echo(f"   User: {settings.user_id}")
    click.echo(f"   Account: {_resolve_account(settings, settings.user_id, None) or '-'}")
    click.echo(f"   Interval: {settings.monitor_interval_sec}s")
    click.echo(f"   Session timezone: {settings.session_timezone}")
    click.echo()

    click.echo("[Storage]")
    click.echo(f"   Ledger dir: {settings.ledger_dir}")
    click.echo(f"   Journal dir: {settings.journal_dir}")
    click.echo(f"   Log level: {settings.log_level} ({settings.log_format.value})")
    click.echo()

    if settings.is_live_mode:
        missing = settings.validate_for_live()
        if missing:
            click.echo("[ERROR] Live mode configuration incomplete, missing:")
            for key in missing:
                click.echo(f"   - {key}")
        else:
            click.echo("[OK] Live mode configuration complete")
    else:
        click.echo("[INFO] Paper mode does not require MetaApi configuration")

    click.echo()
    click.echo("=" * 50)


@cli.group()
def paper() -> None:
    """模拟账户工具。"""


@paper.command("open")
@account_option
@click.option("--symbol", required=True, help="品种")
@click.option("--side", type=click.Choice(["buy", "sell"]), default="buy", show_default=True)
@click.option("--volume", type=float, default=0.1, show_default=True, help="手数")
@click.option("--price", type=float, required=True, help="开仓价格")
def paper_open(account_id: str | None, symbol: str, side: str, volume: float, price: float) -> None:
    """在模拟账户中开仓，用于演示监控。"""
    settings = get_settings()
    settings.ensure_directories()
    broker = PaperBroker(settings.ledger_dir)
    account_id = _resolve_account(settings, settings.user_id, account_id)
    if not account_id:
        account_id = broker.create_and_deploy_account(settings.user_id, "", "paper")
        JsonTradeLedger(settings.ledger_dir).save_account(
            BrokerAccount(
                user_id=settings.user_id,
                account_id=account_id,
                login=settings.user_id,
                server_name="paper",
            )
        )
    try:
        position = broker.open_position(account_id, symbol, side, volume, price)  # type: ignore[arg-type]
    except (BrokerError, ValueError) as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"[OK] Opened {position.id} {position.symbol} {position.side} {position.volume} on {account_id}")


# 支持 python -m trade_guardian.main 调用
if __name__ == "__main__":
    cli()
