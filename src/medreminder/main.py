from medreminder.logger import setup_logging, logger, rule_logger
from medreminder.config.settings import *
setup_logging(
    log_level=LOG_LEVEL,
    log_file=LOG_FILE,
    console_level=CONSOLE_LOG_LEVEL,
)

import asyncio
import signal

from medreminder.core.service import ReminderService
from medreminder.errors import ReminderError
from medreminder.events import bus, E
from medreminder.metrics import runtime_metrics
from medreminder.notify.base import ArmedNotification, DisabledNotificationBackend, NotificationBackend
from medreminder.notify.local import LocalNotificationBackend
import medreminder.storage.db_config as db_config
import medreminder.world.refresher

shutdown_event = asyncio.Event()


def signal_handler(sig, frame):
    """处理 SIGINT (Ctrl+C) / SIGTERM 信号"""
    logger.info("收到中断信号,正在依次关闭组件...")
    shutdown_event.set()


def _create_backend() -> NotificationBackend:
    if not NOTIFICATIONS_ENABLED:
        logger.warning("NOTIFICATIONS_ENABLED=false, 通知子系统已禁用")
        return DisabledNotificationBackend()
    return LocalNotificationBackend()


def _register_handlers(service: ReminderService) -> None:
    @bus.on(E.NOTIFICATION_DELIVERED)
    async def on_notification_delivered(notification: ArmedNotification) -> None:
        payload = notification.payload
        rule_logger(payload.rule_id, payload.occurrence_key).info(f"[{payload.kind.value}] {payload.title} - {payload.body}")

    @bus.on(E.NOTIFICATION_RESPONSE)
    async def on_notification_response(rule_id: str, occurrence_key: str, action: str) -> None:
        try:
            await service.handle_notification_response(rule_id, occurrence_key, action)
        except ReminderError as e:
            logger.error(f"处理通知操作失败: rule_id={rule_id}, action={action}, error={e}")

    @bus.on(E.RULE_DELETED)
    async def on_rule_deleted(rule_id: str) -> None:
        logger.debug(f"规则删除完成, 当前统计: {runtime_metrics.snapshot()}")


async def main():
    # 注册信号处理器
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    await db_config.init_db(DB_PATH)

    backend = _create_backend()
    service = ReminderService(backend)
    _register_handlers(service)

    try:
        recovered = await service.recover()
        if recovered:
            logger.warning(f"已补完 {recovered} 个中断的确认操作")
        await service.reschedule_all(cancel_old=not backend.volatile)

        tasks = [medreminder.world.refresher.main_loop(shutdown_event, service)]
        if isinstance(backend, LocalNotificationBackend):
            tasks.append(backend.main_loop(shutdown_event))

        await asyncio.gather(*tasks)
    finally:
        logger.info("关闭提醒服务...")
        logger.info("关闭数据库连接...")
        await db_config.close_db()
        logger.info(f"提醒服务已关闭, 运行统计: {runtime_metrics.snapshot()}")


def run():
    logger.info("启动提醒服务...")
    asyncio.run(main())


if __name__ == "__main__":
    run()
