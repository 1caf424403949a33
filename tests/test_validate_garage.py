#!/usr/bin/env python3
"""Tests for validate_garage schema and reference checks."""

from validate_garage import load_schema, main, validate_garage_file

VALID = """
parts:
  - id: chain-1
    type: chain
    owner: alice
    created: '2024-04-01'

gears:
  - id: road
    owner: alice
    positions: [chain]

attachments:
  - id: a1
    part: chain-1
    gear: road
    position: chain
    start: '2024-05-01T00:00:00+00:00'

plans:
  - id: p1
    name: Wax chain
    metric: distance
    threshold: 300000
    part: chain-1
"""


class TestLoadSchema:
    """Tests for load_schema function."""

    def test_returns_dict(self):
        schema = load_schema()
        assert isinstance(schema, dict)

    def test_has_expected_structure(self):
        schema = load_schema()
        assert "parts" in schema["properties"]
        assert "attachments" in schema["properties"]
        assert "serviceEvents" in schema["properties"]


class TestValidateGarageFile:
    """Tests for validate_garage_file function."""

    def test_valid_returns_no_errors(self, tmp_path):
        """Valid garage file returns empty error list."""
        path = tmp_path / "valid.yaml"
        path.write_text(VALID)
        assert validate_garage_file(path, load_schema()) == []

    def test_empty_file_is_valid(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert validate_garage_file(path, load_schema()) == []

    def test_missing_required_field(self, tmp_path):
        """Missing part owner is reported with its path."""
        path = tmp_path / "invalid.yaml"
        path.write_text(VALID.replace("    owner: alice\n    created", "    created", 1))
        errors = validate_garage_file(path, load_schema())
        assert len(errors) >= 1
        assert any("owner" in e for e in errors)
        assert any("parts.0" in e for e in errors)

    def test_unknown_metric(self, tmp_path):
        path = tmp_path / "invalid.yaml"
        path.write_text(VALID.replace("metric: distance", "metric: furlongs"))
        assert validate_garage_file(path, load_schema()) != []

    def test_plan_bound_twice(self, tmp_path):
        path = tmp_path / "invalid.yaml"
        path.write_text(VALID.replace("    part: chain-1\n", "    part: chain-1\n    partType: chain\n"))
        assert validate_garage_file(path, load_schema()) != []

    def test_negative_distance(self, tmp_path):
        path = tmp_path / "invalid.yaml"
        path.write_text(
            VALID
            + "\nactivities:\n  - {id: r, owner: alice, start: '2024-05-02', duration: 60, distance: -1}\n"
        )
        assert validate_garage_file(path, load_schema()) != []

    def test_yaml_parse_error(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("parts: [\n")
        errors = validate_garage_file(path, load_schema())
        assert errors[0].startswith("YAML parse error")

    def test_missing_file(self, tmp_path):
        errors = validate_garage_file(tmp_path / "nope.yaml", load_schema())
        assert errors[0].startswith("Cannot read file")

    def test_typed_positions(self, tmp_path):
        path = tmp_path / "valid.yaml"
        typed = "positions: {chain: [chain], bottle: null}"
        path.write_text(VALID.replace("positions: [chain]", typed))
        assert validate_garage_file(path, load_schema()) == []

    def test_positions_not_names(self, tmp_path):
        path = tmp_path / "invalid.yaml"
        path.write_text(VALID.replace("positions: [chain]", "positions: 3"))
        assert validate_garage_file(path, load_schema()) != []


class TestReferences:
    """Records must point at parts, gear and plans defined in the file."""

    def test_attachment_to_missing_position(self, tmp_path):
        path = tmp_path / "invalid.yaml"
        path.write_text(VALID.replace("    position: chain\n", "    position: saddle\n"))
        [error] = validate_garage_file(path, load_schema())
        assert error.startswith("Reference error")
        assert "saddle" in error

    def test_attachment_to_unknown_gear(self, tmp_path):
        path = tmp_path / "invalid.yaml"
        path.write_text(VALID.replace("    gear: road\n", "    gear: tandem\n"))
        [error] = validate_garage_file(path, load_schema())
        assert "tandem" in error

    def test_plan_for_unknown_part(self, tmp_path):
        path = tmp_path / "invalid.yaml"
        path.write_text(VALID.replace("    part: chain-1\n", "    part: chain-9\n"))
        errors = validate_garage_file(path, load_schema())
        assert any("plan p1" in e for e in errors)

    def test_id_shared_by_part_and_gear(self, tmp_path):
        path = tmp_path / "invalid.yaml"
        path.write_text(VALID.replace("  - id: road\n", "  - id: chain-1\n"))
        errors = validate_garage_file(path, load_schema())
        assert any("used by a part and a gear" in e for e in errors)

    def test_bad_timestamp_is_data_error(self, tmp_path):
        path = tmp_path / "invalid.yaml"
        path.write_text(VALID.replace("created: '2024-04-01'", "created: '2024-13-45'"))
        [error] = validate_garage_file(path, load_schema())
        assert error.startswith("Data error")


class TestMain:
    """Tests for the validate_garage entry point."""

    def test_all_valid(self, tmp_path, capsys):
        path = tmp_path / "valid.yaml"
        path.write_text(VALID)
        assert main([str(path)]) == 0
        assert "OK: valid.yaml" in capsys.readouterr().out

    def test_one_invalid(self, tmp_path, capsys):
        good = tmp_path / "valid.yaml"
        good.write_text(VALID)
        bad = tmp_path / "bad.yaml"
        bad.write_text("parts: [{id: x}]\n")
        assert main([str(good), str(bad)]) == 1
        assert "FAIL: bad.yaml" in capsys.readouterr().out

    def test_no_arguments(self, capsys):
        assert main([]) == 2
