import pytest

from image_service.workload import (
    DEFAULT_DURATION_MS,
    format_elapsed,
    parse_duration,
    simulate_filter,
)


@pytest.mark.parametrize('raw, expected', [
    ('120', 120),
    ('+7', 7),
    ('0', 0),
    ('-25', -25),
    ('007', 7),
])
def test_parse_duration_accepts_integers(raw, expected):
    assert parse_duration(raw) == expected


@pytest.mark.parametrize('raw', [
    None,
    '',
    'abc',
    '12.5',
    ' 10',
    '10 ',
    '10\n',
    '1_000',
    '0x10',
    '+',
    '99999999999999999999',
])
def test_parse_duration_falls_back_to_default(raw):
    assert parse_duration(raw) == DEFAULT_DURATION_MS


def test_simulate_filter_runs_for_at_least_the_budget():
    result = simulate_filter(20)
    assert result.pixels > 0
    assert result.elapsed_ns >= 20_000_000


@pytest.mark.parametrize('duration_ms', [0, -1, -5000])
def test_simulate_filter_non_positive_budget_does_nothing(duration_ms):
    result = simulate_filter(duration_ms)
    assert result.pixels == 0
    assert result.elapsed_ns < 50_000_000


@pytest.mark.parametrize('ns, expected', [
    (0, '0s'),
    (850, '850ns'),
    (1_000, '1µs'),
    (12_500, '12.5µs'),
    (50_012_300, '50.0123ms'),
    (1_500_000_000, '1.5s'),
    (123_500_000_000, '2m3.5s'),
    (3_600_000_000_000, '1h0m0s'),
    (-2_000_000, '-2ms'),
])
def test_format_elapsed(ns, expected):
    assert format_elapsed(ns) == expected
