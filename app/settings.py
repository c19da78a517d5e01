from pathlib import Path
from typing import Set, Any, Literal
from urllib.request import getproxies

import dotenv
from loguru import logger
from pydantic import SecretStr, Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from telegram.ext import Application

from models import ProviderSettings

dotenv.load_dotenv()


PROJECT_DIR = Path(__file__).parent
LOG_DIR = PROJECT_DIR.joinpath("logs")
DATA_DIR = PROJECT_DIR.joinpath("data")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_ignore_empty=True, extra="ignore")

    TELEGRAM_BOT_API_TOKEN: SecretStr = Field(
        default="", description="通过 https://t.me/BotFather 获取机器人的 API_TOKEN"
    )

    MODEL_PROVIDER: Literal["openai", "anthropic", "custom"] = Field(
        default="openai",
        description="模型提供方。`custom` 会把请求直接 POST 到 MODEL_API_HOST 指向的完整地址。",
    )

    MODEL_NAME: str = Field(default="gpt-4o", description="模型标识，例如 gpt-4o, claude-3-5-sonnet")

    MODEL_API_HOST: str = Field(
        default="api.openai.com",
        description="模型接口主机名。openai/anthropic 只需要主机名，custom 可以携带协议与路径。",
    )

    MODEL_API_KEY: SecretStr = Field(default="", description="模型接口的 API_KEY")

    TARGET_LANGUAGE: str = Field(
        default="es", description="与模型对话时使用的目标语言编码", examples=["es", "ja", "zh"]
    )

    TRANSLATION_API_KEY: SecretStr = Field(
        default="",
        description="Google Translation API key。留空时进入降级模式，返回带语言标记的占位译文，不访问网络。",
    )

    TEMPERATURE: float = Field(default=0.7, ge=0, le=1)

    MAX_TOKENS: int = Field(default=1000, ge=100, le=16000)

    HTTP_REQUEST_TIMEOUT: float = Field(
        default=75.0,
        description="HTTP 请求超时时间（秒），同时用于翻译、模型接口与 Telegram API 调用。",
    )

    DATABASE_URL: str = Field(
        default=f"sqlite:///{DATA_DIR.joinpath('crosstalk.db')}",
        description="会话日志的键值存储，默认使用本地 SQLite",
    )

    EXPORT_DIR: Path = Field(
        default=DATA_DIR.joinpath("exports"), description="开启新会话时，旧会话 JSONL 的导出目录"
    )

    TELEGRAM_CHAT_WHITELIST: str = Field(
        default="", description="允许的聊天 ID，逗号分隔。留空表示不限制。"
    )

    whitelist: Set[int] = Field(
        default_factory=set,
        description="配置 TELEGRAM_CHAT_WHITELIST 后， id 被清洗到该列表方便使用",
    )

    def model_post_init(self, context: Any, /) -> None:
        try:
            if not self.whitelist and self.TELEGRAM_CHAT_WHITELIST:
                self.whitelist = {
                    int(i.strip()) for i in filter(None, self.TELEGRAM_CHAT_WHITELIST.split(","))
                }
        except Exception as err:
            logger.warning(f"解析 TELEGRAM_CHAT_WHITELIST 失败 - {err}")

    def get_provider_settings(self) -> ProviderSettings:
        return ProviderSettings(
            provider=self.MODEL_PROVIDER,
            model_name=self.MODEL_NAME,
            api_host=self.MODEL_API_HOST,
            api_key=self.MODEL_API_KEY.get_secret_value(),
            target_language=self.TARGET_LANGUAGE,
            translation_api_key=self.TRANSLATION_API_KEY.get_secret_value(),
            temperature=self.TEMPERATURE,
            max_tokens=self.MAX_TOKENS,
            timeout=self.HTTP_REQUEST_TIMEOUT,
        )

    def get_default_application(self) -> Application:
        _base_builder = (
            Application.builder()
            .token(self.TELEGRAM_BOT_API_TOKEN.get_secret_value())
            .connect_timeout(self.HTTP_REQUEST_TIMEOUT)
            .write_timeout(self.HTTP_REQUEST_TIMEOUT)
            .read_timeout(self.HTTP_REQUEST_TIMEOUT)
        )
        if proxy_url := getproxies().get("http"):
            logger.success(f"使用代理: {proxy_url}")
            application = _base_builder.proxy(proxy_url).get_updates_proxy(proxy_url).build()
        else:
            application = _base_builder.build()

        return application


settings = Settings()  # type: ignore
