"""
统一日志处理模块，支持彩色输出
"""
import logging
import sys
from typing import Optional, Union

# LOG_LEVEL 字符串到日志级别的映射，NONE 表示关闭日志
LOG_LEVEL_MAP = {
    'DEBUG': logging.DEBUG,
    'INFO': logging.INFO,
    'WARNING': logging.WARNING,
    'WARN': logging.WARNING,
    'ERROR': logging.ERROR,
    'CRITICAL': logging.CRITICAL,
    'NONE': logging.CRITICAL + 1,
}

DEFAULT_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s'


class ColoredFormatter(logging.Formatter):
    """彩色日志格式化器"""

    # ANSI 颜色代码
    COLORS = {
        'DEBUG': '\033[36m',      # 青色
        'INFO': '\033[32m',       # 绿色
        'WARNING': '\033[33m',    # 黄色
        'ERROR': '\033[31m',      # 红色
        'CRITICAL': '\033[35m',   # 紫色
        'RESET': '\033[0m',       # 重置
    }

    def __init__(self, use_color: bool = True, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.use_color = use_color and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        """格式化日志记录"""
        if not self.use_color:
            return super().format(record)

        original_levelname = record.levelname
        original_msg = record.msg
        original_args = record.args

        color = self.COLORS.get(record.levelname, self.COLORS['RESET'])
        reset = self.COLORS['RESET']

        # 先格式化消息，再整体着色，args 置空避免二次格式化
        record.levelname = f"{color}{record.levelname}{reset}"
        record.msg = f"{color}{record.getMessage()}{reset}"
        record.args = ()
        try:
            return super().format(record)
        finally:
            # 恢复原始值（避免影响其他处理器）
            record.levelname = original_levelname
            record.msg = original_msg
            record.args = original_args


def parse_log_level(level: Union[str, int, None]) -> int:
    """
    将 LOG_LEVEL 配置转换为 logging 级别

    Args:
        level: 级别名称（大小写不敏感）或 logging 常量

    Returns:
        logging 级别，无法识别时返回 INFO
    """
    if isinstance(level, int):
        return level
    if not level:
        return logging.INFO
    return LOG_LEVEL_MAP.get(str(level).strip().upper(), logging.INFO)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    获取日志记录器

    不添加处理器，日志统一传播到根日志记录器处理，避免重复输出。
    """
    return logging.getLogger(name)


def configure_root_logger(
    level: Union[str, int] = logging.INFO,
    use_color: bool = True,
    format_string: Optional[str] = None
) -> None:
    """
    配置根日志记录器

    Args:
        level: 日志级别，支持 "DEBUG" 等字符串
        use_color: 是否使用彩色输出，默认为 True
        format_string: 自定义格式字符串，如果为 None 则使用默认格式
    """
    level = parse_log_level(level)
    if format_string is None:
        format_string = DEFAULT_FORMAT

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # 清除现有的处理器，避免重复配置
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(ColoredFormatter(
        use_color=use_color,
        fmt=format_string,
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    root_logger.addHandler(console_handler)

    # 设置第三方库的日志级别
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
