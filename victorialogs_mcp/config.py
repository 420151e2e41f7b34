from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, Field, ValidationError, field_validator
from loguru import logger


class VictoriaLogsConfig(BaseModel):
    baseUrl: str
    httpMethod: str = "POST"
    # 附加到每个查询请求的参数，例如 "extra_filters=app:foo&timeout=10s"
    customQueryParameters: str = ""
    # 数据源级最小间隔
    timeInterval: Optional[str] = None
    scrapeInterval: Optional[str] = None
    queryTimeout: Optional[str] = None
    maxLines: int = Field(default=1000, gt=0)

    @field_validator("httpMethod")
    @classmethod
    def _normalize_method(cls, v: str) -> str:
        # 为空时使用 POST
        return (v or "POST").upper()


class GlobalConfig(BaseModel):
    victoriaLogsConfig: VictoriaLogsConfig
    serverPort: Optional[int] = Field(default=7000, description="MCP 服务监听端口")


@dataclass
class ConfigManager:
    global_config: GlobalConfig

    @property
    def datasource(self) -> VictoriaLogsConfig:
        return self.global_config.victoriaLogsConfig

    @staticmethod
    def load(path: Optional[str] = None) -> "ConfigManager":
        cfg_path = path or os.getenv("VLOGS_CONFIG_PATH") or os.path.abspath("config.json")
        logger.debug(f"加载配置文件: {cfg_path}")
        with open(cfg_path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        try:
            gc = GlobalConfig.model_validate(raw)
        except ValidationError as e:
            logger.error(f"配置文件校验失败: {e}")
            raise RuntimeError(f"Invalid config.json: {e}")
        vc = gc.victoriaLogsConfig
        logger.info(
            f"配置加载成功: base={vc.baseUrl} method={vc.httpMethod} "
            f"timeInterval={vc.timeInterval or 'N/A'} maxLines={vc.maxLines} port={gc.serverPort}"
        )
        return ConfigManager(global_config=gc)
