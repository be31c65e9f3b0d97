import pytest

from wabot.utils.config import Config, normalize_number


@pytest.mark.parametrize("value,expected", [
    ("2348000000001@s.whatsapp.net", "2348000000001"),
    ("2348000000001:12@s.whatsapp.net", "2348000000001"),
    ("+234 800-000-0001", "2348000000001"),
    ("", ""),
    (None, ""),
])
def test_normalize_number(value, expected):
    assert normalize_number(value) == expected


def test_list_settings_read_environment(monkeypatch):
    monkeypatch.setenv("ADMIN_NUMBERS", "+2348011111111, 2348022222222@s.whatsapp.net,,")
    monkeypatch.setenv("DISABLED_PLUGINS", "clubs,betting")
    config = Config()
    assert config.admin_numbers == ["2348011111111", "2348022222222"]
    assert config.disabled_plugins == ["clubs", "betting"]


def test_validate_reports_every_problem():
    config = Config(owner_number="", mode="secret", mongo_uri="postgres://db", mongo_db_name="")
    problems = config.validate()
    assert "OWNER_NUMBER is required" in problems
    assert 'MODE must be "public" or "private"' in problems
    assert "MONGODB_URI must be a mongodb:// or mongodb+srv:// URI" in problems
    assert "MONGODB_DB is required" in problems

    assert Config(owner_number="234", mongo_uri="mongodb://localhost:27017", mode="public").validate() == []
    assert Config(owner_number="234", mongo_uri="mongodb+srv://cluster.example.net", mode="public").validate() == []
