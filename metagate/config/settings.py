"""Runtime settings."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="METAGATE_", extra="ignore")

    app_name: str = "MetaGate"
    log_level: str = "info"
    log_dir: str = "logs"
    log_to_file: bool = True
    host: str = "127.0.0.1"
    port: int = 18090

    origin_base_url: str = "https://your-app.example.com"
    # 路由规则与分类策略文件；不存在时使用内置默认（无路由）
    routes_path: str = "config/routes.yaml"

    origin_timeout_seconds: float = 30.0
    origin_max_connections: int = 100
    origin_max_keepalive_connections: int = 20
    metadata_timeout_seconds: float = Field(default=3.0, gt=0.0)
    metadata_max_connections: int = 50

    favicon_url: str = ""
    rewrite_origin_headers: bool = True
    redirect_assets: bool = True
    rewrite_asset_urls: bool = True
    enable_title_script: bool = True

    # comma separated; empty keeps the values from the routes file / defaults
    json_languages: str = ""
    bot_keywords: str = ""
    restrictive_browser_agents: str = ""
    asset_prefixes: str = ""
    asset_suffixes: str = ""


settings = Settings()
