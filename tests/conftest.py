import pytest
import yaml
from fastapi.testclient import TestClient

from signage.api.server import create_app
from signage.core.app import SignageApp
from signage.core.db import close_db, init_db
from signage.core.local_store import LocalStore
from signage.core.task_manager import TaskManager
from signage.device.identity import DeviceIdentity


def write_config(path, **overrides):
    data = {
        "logging": {"level": "DEBUG"},
        "database": {"path": str(path.parent / "signage.db")},
        "api": {"host": "127.0.0.1", "port": 8765, "admin_token": None},
        "device": {"storage_dir": str(path.parent / "device"), "poll_interval": 30},
        "schedules": {"batch_size": 100, "compensate_partial_failure": False},
        "preview": {"ttl_seconds": 3600, "purge_interval": 300},
    }
    for section, values in overrides.items():
        data.setdefault(section, {}).update(values)
    path.write_text(yaml.safe_dump(data))
    return path


@pytest.fixture
def db(tmp_path):
    close_db()
    init_db(db_url=f"sqlite:///{tmp_path / 'test.db'}")
    yield
    close_db()


@pytest.fixture
def config_path(tmp_path):
    return write_config(tmp_path / "config.yaml")


@pytest.fixture
def signage_app(config_path):
    close_db()
    app = SignageApp(config_path=str(config_path), watch_config=False, configure_logging=False)
    yield app
    app.shutdown()


@pytest.fixture
def client(signage_app):
    return TestClient(create_app(signage_app))


@pytest.fixture
def identity(tmp_path):
    return DeviceIdentity(LocalStore(str(tmp_path / "device-store")))


@pytest.fixture
def task_manager():
    manager = TaskManager()
    yield manager
    manager.stop()


def schedule_csv(label, days, month=3, fajr="05:10", header=None):
    header = header or "label,month,day,fajr,sunrise,dhuhr,asr,maghrib,isha"
    lines = [header]
    for day in days:
        lines.append(f"{label},{month},{day},{fajr},06:30,12:15,15:40,18:05,19:30")
    return "\n".join(lines) + "\n"
