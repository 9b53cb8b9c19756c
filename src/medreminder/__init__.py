"""个人提醒调度: 规则展开、通知挂载、确认跟踪"""

__version__ = "0.1.0"
