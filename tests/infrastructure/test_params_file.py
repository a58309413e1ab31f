import pytest

from rehearse.domain.errors import InvariantViolation
from rehearse.domain.params import ParameterSet
from rehearse.infrastructure.adapters import HistoryFileError, dump_params, load_params


def test_round_trip(tmp_path):
    params = ParameterSet(desired_retention=0.85, learning_steps=(1, 5, 15))
    path = tmp_path / "params.yaml"
    dump_params(params, path)
    assert load_params(path) == params


def test_bare_weight_list(tmp_path):
    path = tmp_path / "weights.json"
    path.write_text(str(list(ParameterSet.default().weights)))
    assert load_params(path) == ParameterSet.default()


def test_weight_mapping(tmp_path):
    path = tmp_path / "weights.yaml"
    lines = [f"  w{i}: {w}" for i, w in enumerate(ParameterSet.default().weights)]
    path.write_text("weights:\n" + "\n".join(lines) + "\n")
    assert load_params(path).weights == ParameterSet.default().weights


def test_wrong_weight_count(tmp_path):
    path = tmp_path / "short.yaml"
    path.write_text("[1.0, 2.0, 3.0]")
    with pytest.raises(HistoryFileError):
        load_params(path)


def test_unknown_field(tmp_path):
    path = tmp_path / "extra.yaml"
    path.write_text("desired_retention: 0.9\nfavourite_colour: blue\n")
    with pytest.raises(HistoryFileError):
        load_params(path)


def test_bound_violation_surfaces_as_invariant(tmp_path):
    path = tmp_path / "bounds.yaml"
    path.write_text("stability_bounds: [10, 1]\n")
    with pytest.raises(InvariantViolation):
        load_params(path)


def test_scalar_file(tmp_path):
    path = tmp_path / "scalar.yaml"
    path.write_text("42\n")
    with pytest.raises(HistoryFileError):
        load_params(path)
