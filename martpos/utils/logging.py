"""
martpos/utils/logging.py
────────────────────────
Rotating file + stdout logging for the till.
"""
import os
import logging
from logging.handlers import RotatingFileHandler
from flask import has_request_context, request, session


class RequestFormatter(logging.Formatter):
    """
    Adds the request URL, client address and logged-in username to each
    record when one is being handled; '-' otherwise.
    """
    def format(self, record):
        if has_request_context():
            record.url = request.url
            record.remote_addr = request.remote_addr
            record.user = session.get('username', '-')
        else:
            record.url = '-'
            record.remote_addr = '-'
            record.user = '-'
        return super().format(record)


def setup_logging(app):
    """
    logs/app.log, 5 MB × 5 backups, plus stdout.
    Format: timestamp | level | logger | ip | user | url | message

    app.logger is the "martpos" logger, so module loggers such as
    martpos.engine.checkout propagate into the same handlers.
    """
    level = logging.DEBUG if app.config.get('DEBUG') else logging.INFO
    handlers = []

    log_dir = app.config.get('LOG_DIR') or os.path.join(app.root_path, '..', 'logs')
    if not app.config.get('TESTING'):
        try:
            os.makedirs(log_dir, exist_ok=True)
            file_handler = RotatingFileHandler(
                os.path.join(log_dir, 'app.log'),
                maxBytes=5 * 1024 * 1024,
                backupCount=5,
            )
        except OSError as exc:
            # Read-only filesystem: stdout still works
            app.logger.warning(f"File logging disabled ({exc})")
        else:
            file_handler.setFormatter(RequestFormatter(
                '%(asctime)s | %(levelname)s | %(name)s | %(remote_addr)s | %(user)s | %(url)s | %(message)s'
            ))
            file_handler.setLevel(logging.INFO)
            handlers.append(file_handler)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(logging.Formatter(
        '%(asctime)s | %(levelname)s | %(name)s | %(message)s'
    ))
    stream_handler.setLevel(level)
    handlers.append(stream_handler)

    # create_app may run many times in one process (tests): replace, don't stack
    for handler in [h for h in app.logger.handlers if getattr(h, '_martpos', False)]:
        app.logger.removeHandler(handler)
    for handler in handlers:
        handler._martpos = True
        app.logger.addHandler(handler)
    app.logger.setLevel(level)

    app.logger.info("MartPOS startup")
