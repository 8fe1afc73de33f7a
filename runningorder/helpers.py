"""
This is a helper file shared by the cloud synchronisation layer and the CLI.
"""

from __future__ import annotations

import json
import logging
import sys
import threading
import time
from datetime import datetime
from pathlib import Path

import schedule

DATA_LOCATION: Path = Path.home() / "Library" / "Application Support" / "RunningOrder"  #: Location where application data
# is stored.
LOG_LOCATION: Path = Path.home() / "Library" / "Logs" / "RunningOrder"  #: Default location for log files.

LOG_LEVELS = {
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'warning': logging.WARNING,
    'critical': logging.CRITICAL
}


def settings_folder() -> Path:
    """
    Get the location of the Application Support folder for RunningOrder.

    :return: path to the Application Support folder.
    """
    folder = DATA_LOCATION
    folder.mkdir(parents=True, exist_ok=True)
    return folder


def read_json(path: Path) -> tuple[bool, str] | tuple[bool, object]:
    """
    Reads and decodes a JSON file.

    :param path: the file to read.

    :returns:

        -success (:py:class:`bool`) - true if the file exists and holds valid JSON.

        -data (:py:class:`str` | :py:class:`object`) - error message on failure, or the decoded content.

    """
    try:
        with open(path) as fp:
            return True, json.load(fp)
    except FileNotFoundError:
        return False, "File {} not found".format(path)
    except (json.decoder.JSONDecodeError, UnicodeDecodeError) as e:
        return False, "File {} is not valid JSON: {}".format(path, e)


def write_json(path: Path, content: object) -> tuple[bool, str]:
    """
    Encodes a value as JSON and writes it to a file, creating the parent folder if needed. The file is first written
    next to its destination and then moved into place, so readers never see a partial file.

    :param path: the file to write.
    :param content: the value to encode.

    :returns:

        -success (:py:class:`bool`) - true if the file is written.

        -data (:py:class:`str`) - error message on failure, or success message.

    """
    tmp_path = path.with_name(path.name + '.tmp')
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp_path, 'w') as fp:
            json.dump(content, fp)
        tmp_path.replace(path)
    except (OSError, TypeError, ValueError) as e:
        return False, "Unable to write {}: {}".format(path, e)
    return True, "Saved {}".format(path)


def setup_logging(log_level: str, log_folder: Path | None = None, log_stdout: bool = False,
                  log_file: bool = True) -> logging.Logger:
    """
    Sets up the logging system.

    :param log_level: the logging level which can be `debug`, `info`, `warning` or `critical`.
    :param log_folder: folder where log files are written. Defaults to ``~/Library/Logs/RunningOrder``.
    :param log_stdout: if True, logs are sent to standard out.
    :param log_file: if True, logs are sent to file.

    :return: the root logger.
    """
    logging.basicConfig(
        level=LOG_LEVELS[log_level],
        format='%(asctime)s %(levelname)s: %(message)s',
    )
    logger = logging.getLogger()
    logger.setLevel(LOG_LEVELS[log_level])
    if log_file:
        folder = Path(log_folder) if log_folder is not None else LOG_LOCATION
        folder.mkdir(parents=True, exist_ok=True)
        file_name = datetime.now().strftime("RunningOrder_%Y%m%d-%H%M%S") + '.log'
        logger.addHandler(logging.FileHandler(folder / file_name))
    if log_stdout:
        logger.addHandler(logging.StreamHandler(sys.stdout))
    return logger


def run_continuously(scheduler: schedule.Scheduler, interval: int = 1) -> threading.Event:
    """
    Utility function which continuously calls ``scheduler`` to run any pending jobs.

    :param scheduler: the scheduler holding the jobs.
    :param interval: interval between cycles, in seconds.

    :return: a threading event which can be used to stop the continuous run.
    """

    #: When set, the thread will be stopped
    cease_continuous_run = threading.Event()

    class ScheduleThread(threading.Thread):
        """
        Class to run continuous tasks
        """
        def run(self):
            """
            Keep tasks running until cancelled
            """
            while not cease_continuous_run.is_set():
                scheduler.run_pending()
                time.sleep(interval)

    continuous_thread = ScheduleThread(daemon=True)
    continuous_thread.start()
    return cease_continuous_run
