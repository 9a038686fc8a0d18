"""
Settings Configuration
使用 Pydantic 进行配置验证和管理
"""
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)


class FetchSettings(BaseSettings):
    """网页抓取配置"""
    direct_timeout: float = Field(default=5.0, description="直接抓取超时(秒)")
    reader_timeout: float = Field(default=15.0, description="Reader 代理超时(秒)")
    max_bytes: int = Field(default=2 * 1024 * 1024, description="响应体最大字节数")
    user_agent: str = Field(default=DEFAULT_USER_AGENT, description="浏览器 User-Agent")
    accept_language: str = Field(default="en-US,en;q=0.9,zh-CN;q=0.8,zh;q=0.7")
    reader_base_url: str = Field(default="https://r.jina.ai/", description="Reader 代理前缀")
    reader_api_key: Optional[str] = Field(default=None, description="Reader 代理 API Key (可选)")

    class Config:
        env_prefix = "FETCH_"


class HackerNewsSettings(BaseSettings):
    """Hacker News 配置"""
    item_timeout: float = Field(default=3.0, description="讨论条目解析超时(秒)")
    discovery_timeout: float = Field(default=8.0, description="发现列表请求超时(秒)")
    discovery_item_timeout: float = Field(default=8.0, description="发现阶段单条目超时(秒)")
    firebase_url: str = Field(default="https://hacker-news.firebaseio.com/v0")
    algolia_url: str = Field(default="https://hn.algolia.com/api/v1")
    requests_per_second: float = Field(default=10.0, description="请求速率上限")

    class Config:
        env_prefix = "HN_"


class LLMSettings(BaseSettings):
    """LLM 配置"""
    provider: str = Field(default="openai", description="LLM提供商: openai, anthropic, deepseek")
    model_name: Optional[str] = Field(default=None, description="模型名称(不填则使用默认)")
    temperature: float = Field(default=0.2, description="生成温度")
    max_tokens: int = Field(default=1200, description="最大生成token数")
    timeout: float = Field(default=20.0, description="单次调用超时(秒)")
    base_url: Optional[str] = Field(default=None, description="OpenAI 兼容接口地址")

    # API Keys
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API Key")
    anthropic_api_key: Optional[str] = Field(default=None, description="Anthropic API Key")
    deepseek_api_key: Optional[str] = Field(default=None, description="DeepSeek API Key")

    class Config:
        env_prefix = "LLM_"


class PipelineSettings(BaseSettings):
    """分析流水线配置"""
    max_content_chars: int = Field(default=12000, description="正文最大保留字符数")
    extracted_len_threshold: int = Field(default=800, description="正文过短阈值")
    direct_min_len: int = Field(default=100, description="直接抓取正文最小长度")
    reader_min_len: int = Field(default=200, description="Reader 代理正文最小长度")
    include_comments: bool = Field(default=False, description="Ask 类讨论是否附带评论")
    comment_max_items: int = Field(default=30, description="最多附带评论数")

    class Config:
        env_prefix = "PIPELINE_"


class JobSettings(BaseSettings):
    """定时任务配置"""
    job_name: str = Field(default="pull_demands")
    lock_name: str = Field(default="pull_now", description="互斥锁名称")
    lock_ttl_seconds: float = Field(default=180.0, description="锁过期时间(秒)")
    item_timebox_seconds: float = Field(default=35.0, description="单条目分析时间上限(秒)")
    discovery_timeout_seconds: float = Field(default=60.0, description="单数据源发现时间上限(秒)")
    max_per_run: int = Field(default=5, description="每次运行最多分析条目数")
    schedule_enabled: bool = Field(default=False, description="是否启用定时运行")
    schedule_interval_minutes: int = Field(default=60, description="定时运行间隔(分钟)")
    cron_secret: Optional[str] = Field(default=None, description="定时触发共享密钥")

    class Config:
        env_prefix = "JOB_"


class WatchdogSettings(BaseSettings):
    """自动化健康检查阈值"""
    lookback_runs: int = Field(default=5)
    stale_multiplier: float = Field(default=2.0)
    fail_rate_warn: float = Field(default=0.3)
    fail_rate_bad: float = Field(default=0.6)
    fallback_rate_warn: float = Field(default=0.5)

    class Config:
        env_prefix = "WATCHDOG_"


class StorageSettings(BaseSettings):
    """存储配置"""
    backend: str = Field(default="memory", description="存储后端: memory, sqlite")
    sqlite_path: str = Field(default="./data/demand_radar.db", description="SQLite 数据库路径")
    seed_hn_source: bool = Field(default=True, description="无启用数据源时写入默认的 Ask HN 数据源")

    class Config:
        env_prefix = "STORAGE_"


class LogSettings(BaseSettings):
    """日志配置"""
    level: str = Field(default="INFO")
    file: Optional[str] = Field(default=None, description="日志文件名 (写入 logs/)")
    use_rich: bool = Field(default=True)

    class Config:
        env_prefix = "LOG_"


class Settings(BaseSettings):
    """主配置类 - 聚合所有子配置"""

    fetch: FetchSettings = Field(default_factory=FetchSettings)
    hackernews: HackerNewsSettings = Field(default_factory=HackerNewsSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    job: JobSettings = Field(default_factory=JobSettings)
    watchdog: WatchdogSettings = Field(default_factory=WatchdogSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @classmethod
    def load_from_env_file(cls, env_path: Optional[Path] = None) -> "Settings":
        """从指定的 .env 文件加载配置"""
        if env_path is None:
            # 默认查找 config/.env
            env_path = Path(__file__).parent / ".env"

        if env_path.exists():
            from dotenv import load_dotenv
            load_dotenv(env_path)

        return cls(
            fetch=FetchSettings(),
            hackernews=HackerNewsSettings(),
            llm=LLMSettings(),
            pipeline=PipelineSettings(),
            job=JobSettings(),
            watchdog=WatchdogSettings(),
            storage=StorageSettings(),
            log=LogSettings(),
        )


@lru_cache()
def get_settings() -> Settings:
    """获取全局配置单例"""
    return Settings.load_from_env_file()


# 便捷访问
def get_llm_settings() -> LLMSettings:
    return get_settings().llm


def get_fetch_settings() -> FetchSettings:
    return get_settings().fetch


def get_job_settings() -> JobSettings:
    return get_settings().job
