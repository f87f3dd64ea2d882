from types import SimpleNamespace

import pytest

from barbershop.app.core.errors import ValidationError
from barbershop.app.services.shared_services import (
    compute_total_duration,
    service_duration,
    validate_duration_override,
)

REGULAR = SimpleNamespace(is_special_barber=False)
SPECIAL = SimpleNamespace(is_special_barber=True)


def _svc(normal, special=None):
    return SimpleNamespace(duration_minutes=normal, duration_special_minutes=special)


def test_regular_barber_sums_normal_durations():
    assert compute_total_duration([_svc(30, 45), _svc(20)], REGULAR) == 50


def test_special_barber_prefers_special_duration():
    assert compute_total_duration([_svc(30, 45), _svc(20)], SPECIAL) == 65


def test_missing_durations_fall_back_to_thirty_minutes():
    assert service_duration(_svc(None), REGULAR) == 30
    assert service_duration(_svc(None, None), SPECIAL) == 30
    assert service_duration(_svc(0), REGULAR) == 30


def test_unknown_barber_uses_fallback_for_every_service():
    assert compute_total_duration([_svc(60, 90), _svc(15)], None) == 60


def test_override_wins():
    assert compute_total_duration([_svc(30), _svc(30)], REGULAR, override=90) == 90


@pytest.mark.parametrize("value", [4, 481, "abc"])
def test_override_bounds_rejected(value):
    with pytest.raises(ValidationError) as exc:
        validate_duration_override(value)
    assert exc.value.code == "invalid_duration"


def test_override_bounds_accepted():
    assert validate_duration_override(None) is None
    assert validate_duration_override(5) == 5
    assert validate_duration_override(480) == 480
