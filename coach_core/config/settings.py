"""配置管理模块。

支持从 .env、config.yaml 以及环境变量加载配置。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("COACH_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class CoachSettings(BaseSettings):
    """客户端配置设置（使用 Pydantic）。"""

    # ---- 后端 API ----
    api_base_url: str = Field(
        default="http://localhost:8000/api",
        description="知识库后端 API 基础URL",
    )
    stream_path: str = Field(
        default="/chat/stream",
        description="流式对话端点路径（相对 api_base_url）",
    )
    http_timeout: float = Field(default=30.0, ge=1.0, description="普通请求超时时间（秒）")
    stream_read_timeout: float = Field(
        default=300.0,
        ge=1.0,
        description="流式响应两次分块之间的最长等待时间（秒）",
    )

    # ---- 日志 ----
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    # ---- 会话与流式行为 ----
    default_session_title: str = Field(default="新对话", description="新建会话的默认标题")
    rollback_on_failure: bool = Field(
        default=True,
        description="流式请求失败时是否撤回乐观插入的消息",
    )

    # ---- 文档上传 ----
    max_upload_bytes: int = Field(
        default=10 * 1024 * 1024,
        ge=1,
        description="单个上传文档的最大字节数",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("api_base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("api_base_url must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("stream_path")
    @classmethod
    def validate_stream_path(cls, v: str) -> str:
        return v if v.startswith("/") else f"/{v}"

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


settings = CoachSettings()

# 类型别名，让外部代码可以使用 Settings 类型
Settings = CoachSettings
