import json

from bridge.config import load_device_names_file, parse_device_names


def test_parse_device_names():
  names = parse_device_names("esp32-01=Front desk, esp32-02 = Back row,broken,=x,y=")
  assert names == {"esp32-01": "Front desk", "esp32-02": "Back row"}


def test_load_device_names_file(tmp_path):
  path = tmp_path / "names.json"
  path.write_text(json.dumps({"esp32-01": "Lab", "esp32-02": 3}), encoding="utf-8")
  assert load_device_names_file(str(path)) == {"esp32-01": "Lab"}


def test_missing_or_invalid_names_file(tmp_path, capsys):
  assert load_device_names_file("") == {}
  assert load_device_names_file(str(tmp_path / "nope.json")) == {}
  bad = tmp_path / "bad.json"
  bad.write_text("{oops", encoding="utf-8")
  assert load_device_names_file(str(bad)) == {}
  assert "[config] failed to load" in capsys.readouterr().out
