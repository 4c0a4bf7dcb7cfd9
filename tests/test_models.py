import pytest

from shelly_exporter.models import EM, METRICS, MODELS, PRO_3EM, Field, get_model, lookup


def test_every_field_publishes_a_known_metric():
    for model in MODELS.values():
        for call in model.calls:
            for f in call.fields:
                assert f.metric in METRICS, (model.key, f.key)
            if model.transport == "rpc":
                assert call.method
            if call.per_meter:
                assert call.params is not None and "id" in call.params


def test_lookup_walks_dicts_and_lists():
    doc = {"emeters": [{"power": 1.5}, {"power": 2.5}]}
    assert lookup(doc, "emeters.1.power") == 2.5
    with pytest.raises(IndexError):
        lookup(doc, "emeters.2.power")
    with pytest.raises(TypeError):
        lookup(doc, "emeters.0.power.x")


def test_phase_placeholder():
    f = Field("voltage", "result.{phase}_voltage", "shelly_voltage_volts", per_meter=True)
    assert f.read({"result": {"c_voltage": 231.5}}, 2) == 231.5


def test_bool_fields_publish_one_or_zero():
    f = Field("relay_state", "result.output", "shelly_relay_state", kind="bool")
    assert f.read({"result": {"output": True}}) == 1.0
    assert f.read({"result": {"output": False}}) == 0.0
    with pytest.raises(TypeError):
        f.read({"result": {"output": "on"}})


def test_defaults_cover_null_and_missing_values():
    f = Field("input_percent", "result.percent", "shelly_input_percent", default=0.0)
    assert f.read({"result": {"percent": None}}) == 0.0
    assert f.read({"result": {}}) == 0.0
    assert f.read({"result": {"percent": 42.5}}) == 42.5


def test_missing_value_without_default_raises():
    f = Field("voltage", "result.voltage", "shelly_voltage_volts")
    with pytest.raises(KeyError):
        f.read({"result": {}})
    with pytest.raises(TypeError):
        f.read({"result": {"voltage": None}})


def test_em_current_is_derived_from_power_and_voltage():
    current = next(f for f in EM.calls[0].fields if f.key == "current")
    doc = {"emeters": [{"power": 460.0, "voltage": 230.0}, {"power": 10.0, "voltage": 0}]}
    assert current.read(doc, 0) == pytest.approx(2.0)
    assert current.read(doc, 1) is None


def test_pro_3em_has_device_and_phase_energy_totals():
    emdata = PRO_3EM.calls[1]
    assert emdata.method == "EMData.GetStatus"
    keys = [(f.key, f.per_meter) for f in emdata.fields]
    assert ("total_active_energy", False) in keys
    assert ("total_active_energy", True) in keys


def test_field_keys_per_meter():
    assert "relay_state" in EM.field_keys()
    assert "relay_state" not in EM.field_keys(per_meter=True)
    assert "current" in EM.field_keys(per_meter=True)


def test_plus_1pm_reads_inputs_with_input_get_status():
    methods = [c.method for c in get_model("plus_1pm").calls]
    assert methods == ["Switch.GetStatus", "Input.GetStatus"]


def test_unknown_model():
    with pytest.raises(ValueError):
        get_model("pro_2pm")


def test_default_covers_a_null_parent_node():
    f = Field("input_count", "result.counts.total", "shelly_input_count", default=0.0)
    assert f.read({"result": {"counts": None}}) == 0.0
    assert f.read({"result": {"counts": {"total": 17}}}) == 17.0
