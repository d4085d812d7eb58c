"""配置加载模块 - 从环境变量和 .env 文件加载配置。"""

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RunMode(str, Enum):
    """运行模式枚举。"""

    PAPER = "paper"  # 本地模拟账户
    LIVE = "live"  # MetaApi 实盘账户


class LogFormat(str, Enum):
    """日志格式枚举。"""

    JSON = "json"
    CONSOLE = "console"


class Settings(BaseSettings):
    """系统配置设置。

    从环境变量和 .env 文件加载配置。
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==================== 运行模式 ====================
    mode: RunMode = Field(default=RunMode.PAPER, description="运行模式: paper 或 live")

    # ==================== 用户与账户 ====================
    user_id: str = Field(default="local", description="默认用户 ID")
    account_id: str = Field(default="", description="默认券商账户 ID（为空时从账本读取）")

    # ==================== MetaApi ====================
    metaapi_token: str = Field(default="", description="MetaApi auth token")
    metaapi_provisioning_url: str = Field(
        default="https://mt-provisioning-api-v1.agiliumtrade.agiliumtrade.ai",
        description="MetaApi 账户开通 API 地址",
    )
    metaapi_client_url: str = Field(
        default="https://mt-client-api-v1.agiliumtrade.agiliumtrade.ai",
        description="MetaApi 交易 API 地址",
    )
    broker_timeout_sec: float = Field(
        default=15.0,
        gt=0,
        le=120,
        description="单次券商调用超时（秒）",
    )
    broker_max_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="券商调用最大尝试次数",
    )
    deploy_wait_sec: float = Field(
        default=10.0,
        ge=0,
        le=120,
        description="账户部署后的等待时间（秒）",
    )

    # ==================== 监控参数 ====================
    monitor_interval_sec: int = Field(
        default=30,
        ge=5,
        le=3600,
        description="监控循环间隔（秒）",
    )
    session_timezone: str = Field(
        default="UTC",
        description="交易时段与自然日边界所用时区",
    )
    history_start: datetime = Field(
        default=datetime(2024, 1, 1, tzinfo=timezone.utc),
        description="历史成交拉取起点",
    )

    # ==================== 日志配置 ====================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="日志级别",
    )
    log_format: LogFormat = Field(
        default=LogFormat.CONSOLE,
        description="日志输出格式",
    )

    # ==================== 数据存储 ====================
    ledger_dir: Path = Field(
        default=Path("data/ledger"),
        description="交易账本存储目录",
    )
    journal_dir: Path = Field(
        default=Path("data/journal"),
        description="审计日志存储目录",
    )

    @field_validator("ledger_dir", "journal_dir", mode="before")
    @classmethod
    def parse_dir(cls, v: str | Path) -> Path:
        """将字符串转换为 Path 对象。"""
        return Path(v) if isinstance(v, str) else v

    @field_validator("session_timezone")
    @classmethod
    def check_timezone(cls, v: str) -> str:
        """校验时区名称。"""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown_timezone: {v}") from exc
        return v

    @field_validator("history_start")
    @classmethod
    def ensure_aware(cls, v: datetime) -> datetime:
        """无时区的时间按 UTC 处理。"""
        return v if v.tzinfo is not None else v.replace(tzinfo=timezone.utc)

    def ensure_directories(self) -> None:
        """确保必要的目录存在。"""
        self.ledger_dir.mkdir(parents=True, exist_ok=True)
        self.journal_dir.mkdir(parents=True, exist_ok=True)

    @property
    def tz(self) -> ZoneInfo:
        """交易时段时区对象。"""
        return ZoneInfo(self.session_timezone)

    @property
    def is_paper_mode(self) -> bool:
        """是否为模拟账户模式。"""
        return self.mode == RunMode.PAPER

    @property
    def is_live_mode(self) -> bool:
        """是否为实盘模式。"""
        return self.mode == RunMode.LIVE

    def validate_for_live(self) -> list[str]:
        """验证实盘模式的必要配置，返回缺失项列表。"""
        missing = []
        if not self.metaapi_token:
            missing.append("METAAPI_TOKEN")
        return missing


# 全局配置实例（延迟初始化）
_settings: Settings | None = None


def get_settings() -> Settings:
    """获取全局配置实例。"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """重新加载配置。"""
    global _settings
    _settings = Settings()
    return _settings
