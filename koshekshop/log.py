import logging

from koshekshop import config

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'


def setup_logging():
    """Настройка логирования для всех сервисов (бот, витрина, админка)"""
    handlers = [logging.StreamHandler()]
    if config.LOG_TO_FILE:
        handlers.append(logging.FileHandler(config.LOG_FILE, encoding='utf-8'))

    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL, logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers
    )

    # DEBUG для aiogram только в debug-режиме
    if config.LOG_LEVEL == "DEBUG":
        logging.getLogger('aiogram').setLevel(logging.DEBUG)
    else:
        logging.getLogger('httpx').setLevel(logging.WARNING)
