import json
import logging
import threading
from pathlib import Path

import pytest
import schedule
from decouple import config

from runningorder import helpers

TEST_ENV = config('TEST_ENV', default='remote')


class TestHelpers:

    def test_settings_folder(self, monkeypatch, tmp_path):
        data_location = tmp_path / "Application Support" / "RunningOrder"
        monkeypatch.setattr(helpers, 'DATA_LOCATION', data_location)
        result = helpers.settings_folder()
        assert isinstance(result, Path)
        assert result == data_location
        assert data_location.is_dir()

    @pytest.mark.skipif(TEST_ENV != 'local', reason="Requires local filesystem")
    def test_default_settings_folder(self):
        data_location = Path.home() / "Library" / "Application Support" / "RunningOrder"
        result = helpers.settings_folder()
        assert result == data_location

    def test_write_json(self, tmp_path):
        target = tmp_path / "nested" / "data.json"
        success, data = helpers.write_json(target, {'a': [1, 2]})
        assert success is True
        with open(target) as fp:
            assert json.load(fp) == {'a': [1, 2]}
        assert not (tmp_path / "nested" / "data.json.tmp").exists()

        # Not serialisable
        success, data = helpers.write_json(target, {'a': object()})
        assert success is False
        with open(target) as fp:
            assert json.load(fp) == {'a': [1, 2]}

    def test_read_json(self, tmp_path):
        target = tmp_path / "data.json"
        success, data = helpers.read_json(target)
        assert success is False
        assert "not found" in data

        target.write_text('["alice"]')
        success, data = helpers.read_json(target)
        assert success is True
        assert data == ["alice"]

        target.write_text('{not json')
        success, data = helpers.read_json(target)
        assert success is False
        assert "not valid JSON" in data

    def test_setup_logging(self, tmp_path):
        previous_level = logging.getLogger().level
        logger = helpers.setup_logging('warning', tmp_path)
        try:
            assert logger.level == logging.WARNING
            assert len(list(tmp_path.glob("RunningOrder_*.log"))) == 1
        finally:
            logger.setLevel(previous_level)
            for handler in [h for h in logger.handlers if isinstance(h, logging.FileHandler)]:
                logger.removeHandler(handler)
                handler.close()

    def test_run_continuously(self):
        ran = threading.Event()
        scheduler = schedule.Scheduler()
        scheduler.every(1).seconds.do(ran.set)
        stop = helpers.run_continuously(scheduler, interval=1)
        try:
            assert ran.wait(5) is True
        finally:
            stop.set()

