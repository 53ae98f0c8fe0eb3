from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
import yaml

import verifactu.config as config_mod


@pytest.fixture
def fake_keyring():
    backend = MagicMock()
    with patch.dict("sys.modules", {"keyring": backend}):
        yield backend


@pytest.fixture
def checkout(monkeypatch, tmp_path):
    """Pretend config.py lives in tmp_path/src/verifactu."""
    monkeypatch.delenv("VERIFACTU_CONFIG_DIR", raising=False)
    package_dir = tmp_path / "src" / "verifactu"
    package_dir.mkdir(parents=True)
    monkeypatch.setattr(config_mod, "__file__", str(package_dir / "config.py"))
    return tmp_path


class TestGetConfigDir:
    def test_env_override(self, monkeypatch, tmp_path):
        monkeypatch.setenv("VERIFACTU_CONFIG_DIR", str(tmp_path / "anywhere"))
        assert config_mod.get_config_dir() == tmp_path / "anywhere"

    def test_source_checkout(self, checkout):
        (checkout / "config").mkdir()
        assert config_mod.get_config_dir() == checkout / "config"

    def test_user_dir(self, checkout):
        with patch(
            "verifactu.config.platformdirs.user_config_dir", return_value="/home/u/.config/vf"
        ) as user_dir:
            assert str(config_mod.get_config_dir()) == "/home/u/.config/vf"
        user_dir.assert_called_once_with("verifactu-client")


class TestDotenvFiles:
    def test_cwd_then_config_dir(self, monkeypatch, tmp_path):
        config_dir = tmp_path / "cfg"
        config_dir.mkdir()
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("VERIFACTU_CONFIG_DIR", str(config_dir))
        assert config_mod._dotenv_files() == [tmp_path / ".env", config_dir / ".env"]

    def test_skips_missing_config_dir(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("VERIFACTU_CONFIG_DIR", str(tmp_path / "missing"))
        assert config_mod._dotenv_files() == [tmp_path / ".env"]


class TestEndpoints:
    @pytest.mark.parametrize(
        ("production", "host"),
        [(False, "https://prewww1.aeat.es"), (True, "https://www1.agenciatributaria.gob.es")],
    )
    def test_url(self, production, host):
        assert config_mod.get_endpoint(production) == (
            f"{host}/wlpl/TIKE-CONT/ws/SistemaFacturacion/VerifactuSOAP"
        )

    def test_namespaces(self):
        assert config_mod.SUM_NS.endswith("/tike/cont/ws/SuministroLR.xsd")
        assert config_mod.SUM1_NS.endswith("/tike/cont/ws/SuministroInformacion.xsd")


class TestCertificateSettings:
    def test_path(self, monkeypatch):
        monkeypatch.setenv("CERT_PFX_PATH", "/certs/empresa.p12")
        assert config_mod.get_cert_path() == "/certs/empresa.p12"

    def test_path_unset(self, monkeypatch):
        monkeypatch.delenv("CERT_PFX_PATH", raising=False)
        with pytest.raises(KeyError, match="CERT_PFX_PATH"):
            config_mod.get_cert_path()

    @pytest.mark.parametrize(
        ("env_value", "stored", "expected"),
        [
            ("env-pw", "kr-pw", "env-pw"),
            ("", "kr-pw", ""),
            (None, "kr-pw", "kr-pw"),
            (None, None, None),
        ],
    )
    def test_password_resolution(self, monkeypatch, env_value, stored, expected):
        if env_value is None:
            monkeypatch.delenv("CERT_PFX_PASSWORD", raising=False)
        else:
            monkeypatch.setenv("CERT_PFX_PASSWORD", env_value)
        with patch.object(config_mod, "_get_keyring_password", return_value=stored):
            assert config_mod.get_cert_password() == expected


class TestKeyring:
    def test_lookup(self, fake_keyring):
        fake_keyring.get_password.return_value = "guardada"
        assert config_mod._get_keyring_password() == "guardada"
        fake_keyring.get_password.assert_called_once_with("verifactu-client", "cert-pfx-password")

    def test_lookup_without_backend(self, fake_keyring):
        fake_keyring.get_password.side_effect = RuntimeError("no backend")
        assert config_mod._get_keyring_password() is None

    def test_store(self, fake_keyring):
        assert config_mod._set_keyring_password("nueva") is True
        fake_keyring.set_password.assert_called_once_with(
            "verifactu-client", "cert-pfx-password", "nueva"
        )

    def test_store_rejected(self, fake_keyring):
        fake_keyring.set_password.side_effect = RuntimeError("locked")
        assert config_mod._set_keyring_password("nueva") is False


class TestYamlFiles:
    def test_load_yaml(self, tmp_path):
        path = tmp_path / "records.yaml"
        path.write_text("records:\n  - operation: cancellation\n", encoding="utf-8")
        assert config_mod.load_yaml(path) == {"records": [{"operation": "cancellation"}]}

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.touch()
        assert config_mod.load_yaml(path) == {}

    def test_load_system(self, monkeypatch, config_dir, system_dict):
        monkeypatch.setenv("VERIFACTU_CONFIG_DIR", str(config_dir))
        assert config_mod.load_system() == system_dict

    def test_load_taxpayer(self, monkeypatch, config_dir):
        monkeypatch.setenv("VERIFACTU_CONFIG_DIR", str(config_dir))
        assert config_mod.load_taxpayer() == {
            "taxpayer": {"name": "EMPRESA DE EJEMPLO SL", "nif": "B87654321"}
        }

    def test_missing_system_file(self, monkeypatch, tmp_path):
        monkeypatch.setenv("VERIFACTU_CONFIG_DIR", str(tmp_path))
        with pytest.raises(FileNotFoundError):
            config_mod.load_system()

    def test_taxpayer_yaml_utf8(self, monkeypatch, tmp_path):
        (tmp_path / "taxpayer.yaml").write_text(
            yaml.dump({"taxpayer": {"name": "CAÑADA SL", "nif": "B11111111"}}, allow_unicode=True),
            encoding="utf-8",
        )
        monkeypatch.setenv("VERIFACTU_CONFIG_DIR", str(tmp_path))
        assert config_mod.load_taxpayer()["taxpayer"]["name"] == "CAÑADA SL"
