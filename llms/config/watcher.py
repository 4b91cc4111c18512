"""配置文件监听和热重载模块

监听配置文件的变化，当配置文件被修改时自动重新加载配置。
使用 watchdog 库监听文件系统事件，回调被调度回服务所在的事件循环执行。
"""

import asyncio
import json
import os
import threading
from collections.abc import Awaitable, Callable
from concurrent.futures import Future
from pathlib import Path

import aiofiles
from loguru import logger
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .settings import DEFAULT_CONFIG_PATH

ReloadCallback = Callable[[], Awaitable[None]]


class ConfigFileHandler(FileSystemEventHandler):
    """配置文件变化事件处理器"""

    def __init__(self, config_path: Path, callback: Callable[[], None]):
        """
        初始化配置文件处理器

        Args:
            config_path: 要监听的配置文件路径
            callback: 配置文件变化时的回调函数
        """
        self.config_path = config_path.resolve()
        self.callback = callback
        self._last_modified = 0.0

    def on_modified(self, event) -> None:
        if event.is_directory:
            return

        event_path = Path(event.src_path).resolve()
        if event_path != self.config_path:
            return

        # 防止重复触发
        try:
            current_modified = event_path.stat().st_mtime
        except OSError:
            return
        if current_modified == self._last_modified:
            return
        self._last_modified = current_modified

        logger.info(f"配置文件已修改: {self.config_path}")

        # 延迟一点执行，确保文件写入完成
        threading.Timer(0.1, self._execute_callback).start()

    def _execute_callback(self) -> None:
        try:
            self.callback()
        except Exception as e:
            logger.error(f"配置重载回调执行失败: {e}")


class ConfigWatcher:
    """配置文件监听器

    监听指定的配置文件，当文件发生变化时校验内容并在事件循环中
    依次执行重载回调。
    """

    def __init__(self, config_path: str | None = None):
        if config_path is None:
            config_path = os.getenv("CONFIG_PATH", DEFAULT_CONFIG_PATH)

        self.config_path = Path(config_path).resolve()
        self.observer: Observer | None = None
        self.handler: ConfigFileHandler | None = None
        self._reload_callbacks: list[ReloadCallback] = []
        self._loop: asyncio.AbstractEventLoop | None = None
        self._pending: Future | None = None

    def add_reload_callback(self, callback: ReloadCallback) -> None:
        """添加异步配置重载回调函数"""
        self._reload_callbacks.append(callback)

    @property
    def is_watching(self) -> bool:
        return self.observer is not None

    async def start_watching(self) -> None:
        """开始监听配置文件变化"""
        if self.observer is not None:
            logger.warning("配置监听器已在运行")
            return

        if not self.config_path.exists():
            logger.warning(f"配置文件不存在，跳过监听: {self.config_path}")
            return

        self._loop = asyncio.get_running_loop()
        self.handler = ConfigFileHandler(self.config_path, self._on_config_changed)
        self.observer = Observer()
        self.observer.schedule(self.handler, str(self.config_path.parent), recursive=False)
        self.observer.start()

        logger.info(f"开始监听配置文件: {self.config_path}")

    def stop_watching(self) -> None:
        """停止监听配置文件变化"""
        if self.observer is None:
            return

        logger.info("停止配置文件监听")
        self.observer.stop()
        self.observer.join()
        self.observer = None
        self.handler = None
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None
        self._loop = None

    def _on_config_changed(self) -> None:
        """在 watchdog 线程中被调用，把处理逻辑调度回事件循环"""
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.error("事件循环不可用，跳过配置重载")
            return

        logger.info("检测到配置文件变化，开始重新加载...")
        self._pending = asyncio.run_coroutine_threadsafe(self.process_config_change(), loop)

    async def process_config_change(self) -> bool:
        """校验配置文件并执行所有重载回调

        Returns:
            配置文件有效且回调已执行时返回 True
        """
        if not await self._validate_config_file():
            logger.error("配置文件格式无效，跳过重载")
            return False

        for callback in self._reload_callbacks:
            try:
                await callback()
            except Exception as e:
                logger.error(f"配置重载回调执行失败 {getattr(callback, '__name__', callback)}: {e}")

        logger.info("配置重载完成")
        return True

    async def _validate_config_file(self) -> bool:
        try:
            async with aiofiles.open(self.config_path, encoding="utf-8") as f:
                json.loads(await f.read())
            return True
        except (json.JSONDecodeError, OSError) as e:
            logger.error(f"配置文件验证失败: {e}")
            return False
