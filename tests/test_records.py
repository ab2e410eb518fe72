"""Tests for desired-state records and boundary validation."""

import pytest

from scaleway_reconciler.config import ProviderConfig
from scaleway_reconciler.exceptions import ValidationError
from scaleway_reconciler.resources.records import (
    GB,
    SecurityGroupRuleSpec,
    ServerSpec,
    ServerState,
    VolumeSpec,
)


class TestVolumeSpec:
    def test_150gb_is_accepted(self):
        VolumeSpec(150, "l_ssd").validate()

    def test_151gb_is_rejected(self):
        with pytest.raises(ValidationError, match="at most 150"):
            VolumeSpec(151, "l_ssd").validate()

    def test_zero_is_rejected(self):
        with pytest.raises(ValidationError, match="at least 1"):
            VolumeSpec(0, "l_ssd").validate()

    def test_unknown_type_is_rejected(self):
        with pytest.raises(ValidationError, match="volume type"):
            VolumeSpec(10, "b_ssd").validate()

    def test_custom_provider_limits(self):
        VolumeSpec(10, "b_ssd").validate(ProviderConfig(volume_types=("b_ssd",)))

    def test_size_in_bytes(self):
        assert VolumeSpec(3, "l_ssd").size_bytes == 3 * GB == 3_000_000_000

    def test_from_dict_rejects_non_integer_size(self):
        with pytest.raises(ValidationError, match="size_in_gb"):
            VolumeSpec.from_dict({"size_in_gb": "lots", "type": "l_ssd"})

    def test_from_dict_rejects_fractional_size(self):
        with pytest.raises(ValidationError, match="size_in_gb"):
            VolumeSpec.from_dict({"size_in_gb": 150.9, "type": "l_ssd"})

    def test_from_dict_accepts_whole_float_size(self):
        assert VolumeSpec.from_dict({"size_in_gb": 50.0, "type": "l_ssd"}).size_in_gb == 50


class TestServerSpec:
    def test_from_dict_builds_typed_record(self):
        spec = ServerSpec.from_dict({
            "image": "ubuntu",
            "type": "VC1S",
            "tags": ["a", "b"],
            "volumes": [{"size_in_gb": 20, "type": "l_ssd"}],
            "enable_ipv6": True,
            "user_data": {"k": "v", "n": 1},
        }, name="web")
        assert spec.name == "web"
        assert spec.tags == ("a", "b")
        assert spec.volumes == (VolumeSpec(20, "l_ssd"),)
        assert spec.enable_ipv6 is True
        assert spec.user_data == {"k": "v", "n": "1"}
        spec.validate()

    def test_missing_image_is_rejected(self):
        with pytest.raises(ValidationError, match="'image' is required"):
            ServerSpec.from_dict({"type": "VC1S"}, name="web")

    def test_tags_must_be_a_list(self):
        with pytest.raises(ValidationError, match="tags"):
            ServerSpec.from_dict({"image": "i", "type": "VC1S", "tags": "a,b"}, name="web")

    def test_boolean_flags_are_checked(self):
        with pytest.raises(ValidationError, match="enable_ipv6"):
            ServerSpec.from_dict({"image": "i", "type": "VC1S", "enable_ipv6": "yes"}, name="web")

    def test_unknown_server_type_is_rejected(self):
        with pytest.raises(ValidationError, match="commercial type"):
            ServerSpec(name="web", image="i", type="HUGE-1").validate()

    def test_invalid_state_is_rejected(self):
        with pytest.raises(ValidationError, match="state"):
            ServerSpec(name="web", image="i", type="VC1S", state="paused").validate()

    def test_nested_volume_is_validated(self):
        spec = ServerSpec(name="web", image="i", type="VC1S", volumes=(VolumeSpec(151, "l_ssd"),))
        with pytest.raises(ValidationError):
            spec.validate()


class TestServerState:
    def test_to_spec_drops_transient_state(self):
        state = ServerState(id="s", name="n", image="i", type="VC1S", state="starting")
        assert state.to_spec().state is None

    def test_connection_info_without_public_ip(self):
        state = ServerState(id="s", name="n", image="i", type="VC1S", state="running")
        assert state.connection_info == {"type": "ssh", "host": ""}


class TestSecurityGroupRuleSpec:
    def test_to_api(self):
        rule = SecurityGroupRuleSpec("sg", "accept", "inbound", "0.0.0.0/0", "TCP", 80)
        assert rule.to_api() == {
            "action": "accept",
            "direction": "inbound",
            "ip_range": "0.0.0.0/0",
            "protocol": "TCP",
            "dest_port_from": 80,
        }

    def test_port_is_optional(self):
        rule = SecurityGroupRuleSpec("sg", "drop", "outbound", "10.0.0.0/8", "ICMP")
        rule.validate()
        assert "dest_port_from" not in rule.to_api()

    @pytest.mark.parametrize("field, value", [
        ("action", "allow"),
        ("direction", "sideways"),
        ("protocol", "SCTP"),
        ("port", 70000),
        ("port", 80.7),
    ])
    def test_invalid_values(self, field, value):
        data = {"security_group": "sg", "action": "accept", "direction": "inbound",
                "ip_range": "0.0.0.0/0", "protocol": "TCP", "port": 22}
        data[field] = value
        with pytest.raises(ValidationError, match=field):
            SecurityGroupRuleSpec.from_dict(data).validate()
