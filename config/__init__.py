"""
Configuration Management Module
统一配置管理
"""
from .settings import (
    FetchSettings,
    HackerNewsSettings,
    JobSettings,
    LLMSettings,
    LogSettings,
    PipelineSettings,
    Settings,
    StorageSettings,
    WatchdogSettings,
    get_fetch_settings,
    get_job_settings,
    get_llm_settings,
    get_settings,
)

__all__ = [
    "FetchSettings",
    "HackerNewsSettings",
    "JobSettings",
    "LLMSettings",
    "LogSettings",
    "PipelineSettings",
    "Settings",
    "StorageSettings",
    "WatchdogSettings",
    "get_fetch_settings",
    "get_job_settings",
    "get_llm_settings",
    "get_settings",
]
