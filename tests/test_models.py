"""Tests for ProvisioningConfig validation and derived paths."""

from dataclasses import FrozenInstanceError

import pytest

from core.provisioning.models import CONFIG_DUMPS
from core.sql_client import Credentials


class TestDerivedPaths:
    def test_paths(self, config, install_tree):
        assert config.template_dir == install_tree.install_root / "templates"
        assert config.dump_dir == install_tree.install_root / "dumps" / "ACME"
        assert config.scripts_dir == install_tree.work_root / "scripts"
        assert config.log_dir == install_tree.work_root / "logs"

    def test_required_artifacts(self, config):
        names = [p.name for p in config.required_artifacts()]
        assert names[:3] == ["create_sysdba.sql", "create_owner.sql", "domain_model_init.sql"]
        assert names[3:] == [f"{name}.dmp" for name in CONFIG_DUMPS]


class TestImmutability:
    def test_frozen(self, config):
        with pytest.raises(FrozenInstanceError):
            config.customer = "OTHER"

    def test_parameters_read_only(self, make_config):
        source = {"REGION": "NORTH"}
        config = make_config(parameters=source)
        source["REGION"] = "SOUTH"

        assert config.parameters["REGION"] == "NORTH"
        with pytest.raises(TypeError):
            config.parameters["REGION"] = "EAST"


class TestValidate:
    def test_valid(self, config):
        assert config.validate() == []

    @pytest.mark.parametrize("field, value, fragment", [
        ("customer", "", "customer must not be empty"),
        ("customer", "1ACME", "customer"),
        ("schema_version", "ten", "schema_version"),
        ("target", " ", "target must not be empty"),
        ("timezone", "UTC", "timezone"),
        ("timezone", "+1:00", "timezone"),
        ("locale", "en-gb", "locale"),
        ("language", "eng", "language"),
    ])
    def test_field_violations(self, make_config, field, value, fragment):
        errors = make_config(**{field: value}).validate()
        assert any(fragment in e for e in errors)

    def test_empty_password(self, make_config):
        errors = make_config(owner=Credentials("SMG", "")).validate()
        assert "owner password must not be empty" in errors

    def test_sysdba_flag_required(self, make_config):
        errors = make_config(sysdba=Credentials("SYS", "pw")).validate()
        assert "sysdba credentials must connect AS SYSDBA" in errors

    def test_missing_install_root(self, make_config, tmp_path):
        errors = make_config(install_root=tmp_path / "absent").validate()
        assert any("install_root" in e for e in errors)

    def test_nms_dirs_together(self, make_config, tmp_path):
        errors = make_config(nms_data_dir=tmp_path).validate()
        assert any("set together" in e for e in errors)

    def test_nms_dirs_must_exist(self, make_config, tmp_path):
        errors = make_config(nms_data_dir=tmp_path / "a", nms_index_dir=tmp_path).validate()
        assert any("nms_data_dir" in e and "does not exist" in e for e in errors)

    def test_empty_parameter_name(self, make_config):
        errors = make_config(parameters={" ": "x"}).validate()
        assert "parameter override names must not be empty" in errors

    def test_all_violations_reported(self, make_config):
        errors = make_config(schema_version="x", timezone="x", locale="x").validate()
        assert len(errors) == 3
