"""
Brief: Tests for zonekeeper.config.config_schema.validate_config.

Inputs:
  - None

Outputs:
  - None
"""

import logging

import pytest

from zonekeeper.config.config_schema import validate_config


def _base_cfg():
    return {
        "dnssec": {"key_dir": "/tmp/keys"},
        "zones": {"source_dir": "/tmp/zones", "output_dir": "/tmp/out"},
    }


def test_minimal_config_is_valid():
    """
    Brief: Only key_dir and the zone directories are required.

    Inputs:
      - minimal mapping

    Outputs:
      - None: Asserts no exception
    """
    validate_config(_base_cfg())


def test_missing_required_section_is_reported():
    """
    Brief: Omitting zones raises ValueError naming the config path.

    Inputs:
      - config without zones

    Outputs:
      - None: Asserts message contents
    """
    cfg = _base_cfg()
    del cfg["zones"]
    with pytest.raises(ValueError) as excinfo:
        validate_config(cfg, config_path="/etc/zonekeeper.yaml")
    assert "/etc/zonekeeper.yaml" in str(excinfo.value)
    assert "zones" in str(excinfo.value)


@pytest.mark.parametrize(
    "section,values",
    [
        ("dnssec", {"ksk_bits": 1024}),
        ("dnssec", {"algorithms": []}),
        ("signing", {"validity_days": 0}),
        ("signing", {"nsec3": {"salt": "xyz"}}),
        ("scheduler", {"max_workers": 0}),
    ],
)
def test_out_of_range_values_are_rejected(section, values):
    """
    Brief: Schema bounds reject unsafe or meaningless values.

    Inputs:
      - section/values merged into the minimal config

    Outputs:
      - None: Asserts ValueError
    """
    cfg = _base_cfg()
    cfg.setdefault(section, {}).update(values)
    with pytest.raises(ValueError):
        validate_config(cfg)


def test_unknown_algorithm_is_rejected():
    """
    Brief: Algorithm names are checked against the supported catalogue.

    Inputs:
      - algorithms: [RSASHA256, NOPE]; tld override with RSAMD5

    Outputs:
      - None: Asserts both offenders are listed
    """
    cfg = _base_cfg()
    cfg["dnssec"]["algorithms"] = ["RSASHA256", "NOPE"]
    cfg["dnssec"]["tld_algorithms"] = {"email": ["RSAMD5"]}
    with pytest.raises(ValueError) as excinfo:
        validate_config(cfg)
    message = str(excinfo.value)
    assert "dnssec/algorithms" in message
    assert "dnssec/tld_algorithms/email" in message


def test_unknown_keys_policy(caplog):
    """
    Brief: Unknown keys warn by default and fail under "error".

    Inputs:
      - config with an extra top-level key

    Outputs:
      - None: Asserts warning then ValueError
    """
    cfg = _base_cfg()
    cfg["extra"] = 1
    with caplog.at_level(logging.WARNING):
        validate_config(dict(cfg))
    assert "extra" in caplog.text

    with pytest.raises(ValueError):
        validate_config(dict(cfg), unknown_keys="error")
    validate_config(dict(cfg), unknown_keys="ignore")
    with pytest.raises(ValueError):
        validate_config(dict(cfg), unknown_keys="maybe")


def test_vars_are_expanded():
    """
    Brief: ${KEY} references are replaced from vars before validation.

    Inputs:
      - vars STATE and ALGS

    Outputs:
      - None: Asserts expanded values and removal of vars
    """
    cfg = {
        "vars": {"STATE": "/srv/zk", "ALGS": ["ED25519"]},
        "dnssec": {"key_dir": "${STATE}/keys", "algorithms": "${ALGS}"},
        "zones": {"source_dir": "${STATE}/zones", "output_dir": "${STATE}/out"},
    }
    validate_config(cfg)
    assert "vars" not in cfg
    assert cfg["dnssec"] == {"key_dir": "/srv/zk/keys", "algorithms": ["ED25519"]}
    assert cfg["zones"]["output_dir"] == "/srv/zk/out"


def test_lowercase_var_names_are_rejected():
    """
    Brief: Variable names must be ALL_UPPERCASE.

    Inputs:
      - vars with key "state"

    Outputs:
      - None: Asserts ValueError
    """
    cfg = _base_cfg()
    cfg["vars"] = {"state": "/srv"}
    with pytest.raises(ValueError):
        validate_config(cfg)
