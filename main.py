#!/usr/bin/env python3
"""
LLMs 网关启动脚本

使用 JSON 配置文件中的 host 和 port 启动服务器。
配置优先级：
1. 命令行指定的 --config 参数
2. 环境变量 CONFIG_PATH 指定的路径
3. ./config/settings.json (默认)
"""

import argparse
import os
import sys
from pathlib import Path

import uvicorn

from llms.config.settings import DEFAULT_CONFIG_PATH, Config


def main():
    """主启动函数"""
    parser = argparse.ArgumentParser(description="启动 LLMs 网关")
    parser.add_argument(
        "--config", type=str, help=f"JSON 配置文件路径 (默认为 {DEFAULT_CONFIG_PATH})"
    )
    args = parser.parse_args()

    # 确保从项目根目录启动
    os.chdir(Path(__file__).parent)

    config_path = args.config or os.getenv("CONFIG_PATH", DEFAULT_CONFIG_PATH)
    # 应用工厂通过 CONFIG_PATH 定位配置文件
    os.environ["CONFIG_PATH"] = config_path

    try:
        config = Config.from_file_sync(config_path)
    except Exception as e:
        print(f"❌ 配置加载失败: {e}")
        sys.exit(1)

    host, port = config.server.host, config.server.port

    print("🚀 启动 LLMs 网关...")
    print(f"   配置文件: {config_path}")
    print(f"   监听地址: {host}:{port}")
    print()
    print("📋 重要端点:")
    print(f"   健康检查: http://{host}:{port}/health")
    print(f"   模型列表: http://{host}:{port}/v1/models")
    print(f"   Anthropic: http://{host}:{port}/v1/messages")
    print(f"   OpenAI: http://{host}:{port}/v1/chat/completions")
    print(f"   提供商管理: http://{host}:{port}/providers")
    print()

    # 注册表保存在进程内存中，只能使用单个 worker
    uvicorn.run(
        "llms.main:create_app",
        factory=True,
        host=host,
        port=port,
        timeout_keep_alive=60,
        log_level=config.logging.level.lower() if config.logging.level != "SUCCESS" else "info",
    )


if __name__ == "__main__":
    main()
