"""配置管理模块。

支持从初始化参数、环境变量、.env 以及 YAML 配置文件加载配置，
优先级依次降低。YAML 文件按以下顺序查找，命中第一个即停止：

1. 环境变量 CHAT_STREAM_CONFIG_FILE 指定的路径
2. 当前工作目录下的 config.yaml
3. 项目根目录下的 config.yaml
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

CONFIG_FILE_ENV = "CHAT_STREAM_CONFIG_FILE"


def _yaml_candidates() -> Iterator[Path]:
    explicit = os.getenv(CONFIG_FILE_ENV)
    if explicit:
        yield Path(explicit).expanduser()
    yield Path.cwd() / "config.yaml"
    yield Path(__file__).resolve().parents[2] / "config.yaml"


def _read_yaml(path: Path) -> Optional[Dict[str, Any]]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        warnings.warn(f"Cannot read {path}: {exc}")
        return None
    if data is None:
        return {}
    if not isinstance(data, dict):
        warnings.warn(f"{path} must contain a mapping at top level, ignored")
        return None
    return data


def load_yaml_config() -> Dict[str, Any]:
    """返回第一个可用 YAML 配置文件的内容；都不存在时返回空字典。"""

    for path in dict.fromkeys(_yaml_candidates()):
        if path.is_file():
            data = _read_yaml(path)
            if data is not None:
                return data
    return {}


class Settings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- 主通道 ----
    main_api_base: str = Field(
        default="http://localhost/v1",
        description="主对话应用的 API 基础URL",
    )
    main_api_key: Optional[str] = Field(default=None, description="主对话应用的 API 密钥")
    user: str = Field(default="chat-stream-user", description="上报给后端的终端用户标识")

    # ---- 辅助通道（不上屏） ----
    auxiliary_enabled: bool = Field(default=False, description="是否启用辅助通道")
    auxiliary_api_base: Optional[str] = Field(
        default=None,
        description="辅助应用的 API 基础URL，为空时沿用主通道",
    )
    auxiliary_api_key: Optional[str] = Field(default=None, description="辅助应用的 API 密钥，为空时沿用主通道")
    auxiliary_user: Optional[str] = Field(default=None, description="辅助通道的用户标识，为空时沿用 user")
    auxiliary_query_prefix: str = Field(
        default="辅助分析: ",
        description="未显式提供辅助内容时，拼接在主内容前的前缀",
    )

    # ---- 时间控制（秒） ----
    http_timeout: float = Field(default=30.0, ge=1.0, description="建立连接的超时时间")
    idle_timeout: float = Field(default=30.0, gt=0, description="通道从注册起的最长存活时间")
    auxiliary_delay: float = Field(default=0.1, ge=0, description="辅助通道相对主通道的延迟发送时间")
    batch_interval: float = Field(default=0.5, ge=0, description="批量辅助请求之间的间隔")

    history_limit: int = Field(default=200, ge=1, description="内存中保留的结果条数上限")
    finished_channel_limit: int = Field(default=100, ge=1, description="保留可查询的已结束通道记录数上限")

    log_dir: str = Field(default="logs", description="日志目录")
    log_level: str = Field(default="INFO", description="日志级别")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return load_yaml_config()

    @field_validator("main_api_key", "auxiliary_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v!r}")
        return level

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = Settings()
