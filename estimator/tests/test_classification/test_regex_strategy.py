import pytest

from estimator.app.domains.classification.regex_strategy import (
    RegexStrategy,
    RuleTier,
    has_activity_keywords,
)
from estimator.app.domains.classification.schemas import ClassificationRow, ItemLabel


@pytest.fixture
def strategy():
    return RegexStrategy()


class TestStrictRules:
    def test_state_work_rate_is_work(self, strategy):
        result = strategy.match("ГЭСН12-34-5")
        assert result is not None
        assert result.label == ItemLabel.WORK
        assert result.confidence == 1.0
        assert result.source == "regex_strict"

    @pytest.mark.parametrize("code", ["ФЕР01-01-003-01", "ТЕРр65-12-1", "ГЭСНм08-02-142-01"])
    def test_state_rate_families(self, strategy, code):
        result = strategy.match(code)
        assert result.label == ItemLabel.WORK
        assert result.source == "regex_strict"

    def test_fsbc_material_code(self, strategy):
        result = strategy.match("01.2.03.04-5678")
        assert result.label == ItemLabel.MATERIAL
        assert result.confidence == 1.0

    def test_price_book_code_is_material(self, strategy):
        result = strategy.match("ФССЦ-101-1234", "Кирпич керамический")
        assert result.label == ItemLabel.MATERIAL

    def test_price_book_code_with_equipment_name(self, strategy):
        result = strategy.match("ФСБЦ-08.4.03.02-0001", "Оборудование вентиляционное")
        assert result.label == ItemLabel.EQUIPMENT

    def test_machinery_code(self, strategy):
        result = strategy.match("91.05.05-015")
        assert result.label == ItemLabel.EQUIPMENT
        assert result.source == "regex_strict"

    def test_equipment_classifier_code(self, strategy):
        result = strategy.match("62.1.01.02-0003")
        assert result.label == ItemLabel.EQUIPMENT

    def test_labor_code(self, strategy):
        result = strategy.match("1-100-20")
        assert result.label == ItemLabel.LABOR

    def test_code_is_trimmed(self, strategy):
        result = strategy.match("  ГЭСН12-34-5  ")
        assert result.label == ItemLabel.WORK


class TestLooseRules:
    def test_unprefixed_work_rate(self, strategy):
        result = strategy.match("12-01-002-01")
        assert result.label == ItemLabel.WORK
        assert result.confidence == 0.9
        assert result.source == "regex_loose"

    def test_generic_material_code(self, strategy):
        result = strategy.match("11.01.01-0012")
        assert result.label == ItemLabel.MATERIAL
        assert result.source == "regex_loose"

    def test_generic_format_skips_machinery_prefix(self, strategy):
        assert strategy.match("08.01.01-0012") is None

    def test_commercial_price_with_activity_is_work(self, strategy):
        result = strategy.match("Прайс-15", "Монтаж вентилятора")
        assert result.label == ItemLabel.WORK
        assert result.source == "regex_loose"

    def test_commercial_price_without_activity_is_material(self, strategy):
        result = strategy.match("КП-3", "Кабель ВВГ 3х2,5")
        assert result.label == ItemLabel.MATERIAL


class TestNoMatch:
    @pytest.mark.parametrize("code", ["", "   ", "XYZ-???", "позиция 5"])
    def test_unrecognised_codes(self, strategy, code):
        assert strategy.match(code) is None

    def test_tier_confidences(self):
        assert RuleTier.STRICT.confidence == 1.0
        assert RuleTier.LOOSE.confidence == 0.9


class TestBatch:
    @pytest.mark.asyncio
    async def test_batch_is_sparse(self, strategy):
        rows = [
            ClassificationRow(code="ГЭСН12-34-5", name="Кладка"),
            ClassificationRow(code="unknown", name="Что-то"),
            ClassificationRow(code="01.2.03.04-5678", name="Бетон"),
        ]
        results = await strategy.classify_batch(rows)
        assert set(results) == {0, 2}
        assert results[2].label == ItemLabel.MATERIAL

    @pytest.mark.asyncio
    async def test_single_classify(self, strategy):
        result = await strategy.classify("ГЭСН12-34-5", "Кладка")
        assert result.label == ItemLabel.WORK


def test_activity_keywords():
    assert has_activity_keywords("Монтаж трубопровода")
    assert has_activity_keywords("Кабель, прокладка в лотках")
    assert not has_activity_keywords("Кабель медный")
