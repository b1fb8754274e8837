"""
Non-blocking logging: the root logger writes to a queue, a listener thread
drains it to a rotating file and the console.
"""
import logging
import os
import queue
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from typing import Optional

FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'


def setup_logging(level: str = "INFO", log_dir: Optional[str] = "logs",
                  filename: str = "zigbee.log") -> QueueListener:
    """
    Install the queue based pipeline on the root logger and start it.

    Returns the listener; call stop() on it at shutdown to flush.
    log_dir None disables the file handler.
    """
    # 1. Create a queue for logs
    log_queue = queue.Queue(-1)  # Unlimited size

    # 2. Setup the actual handlers (File & Console)
    formatter = logging.Formatter(FORMAT)
    handlers = []
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(os.path.join(log_dir, filename), maxBytes=1024 * 1024, backupCount=3)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    # 3. Create the Listener (Runs in a separate thread)
    listener = QueueListener(log_queue, *handlers)

    # 4. Configure the root logger to write to the Queue
    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())

    # Remove default handlers to avoid duplication
    root_logger.handlers = []
    root_logger.addHandler(QueueHandler(log_queue))

    # zigpy is chatty at DEBUG
    logging.getLogger('zigpy').setLevel(logging.INFO)

    listener.start()
    return listener
