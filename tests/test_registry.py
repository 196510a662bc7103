import pytest

from app.core.exceptions import InvalidOperationError
from app.services import registry

EXPECTED_COSTS = {
    "merge": 2,
    "split": 2,
    "rotate": 1,
    "compress": 3,
    "watermark": 2,
    "protect": 2,
    "unlock": 3,
    "extract_pages": 1,
    "add_page_numbers": 1,
    "delete_pages": 1,
    "reorder_pages": 1,
    "sign": 3,
    "add_initials": 2,
    "add_date_stamp": 1,
    "add_certificate": 5,
    "verify": 1,
    "fill": 3,
    "create_form": 5,
    "flatten_form": 2,
    "extract_fields": 1,
    "images-to-pdf": 2,
    "html-to-pdf": 3,
    "markdown-to-pdf": 2,
    "text-to-pdf": 1,
}


def test_costs_table():
    assert dict(registry.CREDIT_COSTS) == EXPECTED_COSTS
    assert {name: d.cost for name, d in registry.OPERATIONS.items()} == EXPECTED_COSTS


def test_validate_registry_passes():
    registry.validate_registry()


def test_validate_registry_detects_missing_handler(monkeypatch):
    costs = dict(registry.CREDIT_COSTS, teleport=4)
    monkeypatch.setattr(registry, "CREDIT_COSTS", costs)
    with pytest.raises(RuntimeError, match="teleport"):
        registry.validate_registry()


def test_validate_registry_detects_bad_cost(monkeypatch):
    monkeypatch.setattr(registry, "CREDIT_COSTS", dict(registry.CREDIT_COSTS, merge=0))
    with pytest.raises(RuntimeError, match="merge"):
        registry.validate_registry()


def test_registry_is_immutable():
    with pytest.raises(TypeError):
        registry.OPERATIONS["merge"] = registry.OPERATIONS["split"]


def test_resolve_and_aliases():
    assert registry.resolve("merge").cost == 2
    assert registry.resolve("create").name == "create_form"
    assert registry.resolve("flatten").name == "flatten_form"


@pytest.mark.parametrize("name", ["explode", "", None])
def test_resolve_unknown(name):
    with pytest.raises(InvalidOperationError) as exc:
        registry.resolve(name)
    assert exc.value.status_code == 400
    assert "merge" in exc.value.details["validOperations"]


def test_describe_by_family():
    described = registry.describe("forms")
    assert described["operations"] == {"fill": 3, "create_form": 5, "flatten_form": 2, "extract_fields": 1}
    assert described["usage"]["fill"]["family"] == "forms"
    assert registry.describe()["operations"] == EXPECTED_COSTS
