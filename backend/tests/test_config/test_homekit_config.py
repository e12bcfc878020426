"""
Tests for HomeKit configuration helpers
"""
import pytest

from lightbridge.config.homekit import (
    DEFAULT_HOMEKIT_PORT,
    HomekitConfig,
    generate_pincode,
    generate_setup_id,
    generate_setup_uri,
    get_homekit_config,
    is_valid_pincode,
)


class TestPincode:

    @pytest.mark.parametrize("code", ["031-45-154", "987-65-432"])
    def test_valid_codes(self, code):
        assert is_valid_pincode(code) is True

    @pytest.mark.parametrize("code", [
        "111-11-111",   # repeated digits
        "123-45-678",   # sequential
        "12345678",     # no dashes
        "12-345-678",   # wrong grouping
        "abc-de-fgh",   # not digits
    ])
    def test_invalid_codes(self, code):
        assert is_valid_pincode(code) is False

    def test_generated_codes_are_valid(self):
        for _ in range(20):
            assert is_valid_pincode(generate_pincode())


class TestSetupUri:

    def test_setup_id_format(self):
        setup_id = generate_setup_id()

        assert len(setup_id) == 4
        assert setup_id.isalnum()
        assert setup_id == setup_id.upper()

    def test_uri_format(self):
        uri = generate_setup_uri("031-45-154", "AB12")

        assert uri.startswith("X-HM://")
        assert uri.endswith("AB12")
        assert len(uri) == len("X-HM://") + 9 + 4

    def test_uri_encodes_category(self):
        # Same code, different category -> different payload
        assert generate_setup_uri("031-45-154", "AB12", category=5) != \
            generate_setup_uri("031-45-154", "AB12", category=2)

    def test_bad_setup_code(self):
        with pytest.raises(ValueError, match="Invalid setup_code"):
            generate_setup_uri("1234", "AB12")

    def test_bad_setup_id(self):
        with pytest.raises(ValueError, match="4 characters"):
            generate_setup_uri("031-45-154", "ABC")


class TestHomekitConfig:

    def test_defaults(self, monkeypatch):
        for var in ("HOMEKIT_PORT", "HOMEKIT_PERSIST_DIR", "HOMEKIT_PINCODE", "HOMEKIT_BIND_ADDRESS"):
            monkeypatch.delenv(var, raising=False)

        config = get_homekit_config()

        assert config.port == DEFAULT_HOMEKIT_PORT
        assert config.pincode is None
        assert config.bind_address == "0.0.0.0"

    def test_from_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("HOMEKIT_PORT", "51999")
        monkeypatch.setenv("HOMEKIT_PERSIST_DIR", str(tmp_path))
        monkeypatch.setenv("HOMEKIT_PINCODE", "031-45-154")
        monkeypatch.setenv("HOMEKIT_BIND_ADDRESS", "192.168.1.20")

        config = get_homekit_config()

        assert config.port == 51999
        assert config.persist_dir == str(tmp_path)
        assert config.pincode == "031-45-154"
        assert config.bind_address == "192.168.1.20"

    def test_persist_file_and_dir(self, tmp_path):
        config = HomekitConfig(persist_dir=str(tmp_path / "state"))

        config.ensure_persist_dir()

        assert (tmp_path / "state").is_dir()
        assert config.persist_file.endswith("accessory.state")
