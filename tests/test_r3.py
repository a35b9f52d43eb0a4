import pytest

from fdvproc import r3
from fdvproc.r3 import solve_r3, solve_r3_detailed


def test_degenerate_geometry_returns_sentinel():
    assert solve_r3(0, 0, 1) == -1
    res = solve_r3_detailed(0, 0, 1)
    assert res.reason == r3.DOMAIN_ERROR
    assert not res.converged


def test_egg_form_one_converges_immediately_on_fixed_point():
    # w=600, h=900: r1=150, r2=300, h2=600 -> fixed point r3=900
    res = solve_r3_detailed(600, 900, 1)
    assert res.converged
    assert res.value == pytest.approx(900.0)
    assert res.iterations == 1


def test_egg_form_two_converges_with_small_final_diff():
    res = solve_r3_detailed(600, 900, 2)
    assert res.converged
    assert res.value == pytest.approx(800.0, abs=1e-2)
    assert abs(res.last_diff) < 1e-5
    r1 = (900 - 600) / 4
    h2 = 900 - 300
    assert (res.value - r1) ** 2 - (h2 - r1) ** 2 >= 0


def test_only_literal_one_selects_first_branch():
    assert solve_r3(600, 900, 3) == solve_r3(600, 900, 2)
    assert solve_r3(600, 900, "1") == solve_r3(600, 900, 2)


def test_wider_than_tall_is_domain_error():
    res = solve_r3_detailed(900, 600, 1)
    assert res.reason == r3.DOMAIN_ERROR
    assert res.value == -1.0
    assert res.iterations > 1


def test_iteration_budget_exhausted(monkeypatch):
    monkeypatch.setattr(r3, "MAX_ITERATIONS", 5)
    res = solve_r3_detailed(600, 900, 2)
    assert res.reason == r3.NOT_CONVERGED
    assert res.value == -1.0
    assert solve_r3(600, 900, 2) == -1.0


def test_non_finite_inputs_fail():
    assert solve_r3(float("nan"), 900, 1) == -1.0
    assert solve_r3(600, float("inf"), 1) == -1.0
