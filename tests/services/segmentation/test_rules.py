"""Tests for rule evaluation against customers."""

from datetime import timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import ValidationError
from app.schemas.segment import RuleCriteria
from app.services.segmentation.rules import RuleEvaluator
from app.utils.dates import utc_now
from tests.factories import CustomerFactory, InactiveCustomerFactory


def rules(*items, conditions="AND") -> RuleCriteria:
    return RuleCriteria(
        rules=[{"field": f, "operator": op, "value": v} for f, op, v in items],
        conditions=conditions,
    )


@pytest_asyncio.fixture
async def customers(test_db: AsyncSession, owner_id, other_owner_id) -> dict:
    """Five customers with purchase counts 9, 10, 15, 20 and 21."""
    now = utc_now()
    by_count = {}
    names = ["Acme Corp", "Bolt Industries", "Cobalt Co", "Delta Supply", "Echo Studio"]
    cities = ["Austin", "Dallas", "Austin", "Houston", "Toronto"]
    for count, name, city in zip([9, 10, 15, 20, 21], names, cities):
        customer = CustomerFactory(
            owner_id=owner_id,
            name=name,
            city=city,
            purchase_count=count,
            total_purchases=count * 100.0,
            last_purchase=now - timedelta(days=count),
        )
        by_count[count] = customer
        test_db.add(customer)

    test_db.add(InactiveCustomerFactory(owner_id=owner_id, name="Acme Dormant", purchase_count=15))
    test_db.add(CustomerFactory(owner_id=other_owner_id, name="Acme Elsewhere", purchase_count=15))
    await test_db.commit()
    return by_count


class TestRuleEvaluation:
    """Operators evaluated in SQL."""

    @pytest.mark.asyncio
    async def test_between_is_inclusive(self, test_db, owner_id, customers):
        """[10, 20] matches 10, 15 and 20 but not 9 or 21."""
        ids = await RuleEvaluator(test_db).evaluate(owner_id, rules(("purchaseCount", "between", [10, 20])))

        assert set(ids) == {customers[10].id, customers[15].id, customers[20].id}

    @pytest.mark.asyncio
    async def test_contains_is_case_insensitive(self, test_db, owner_id, customers):
        ids = await RuleEvaluator(test_db).evaluate(owner_id, rules(("name", "contains", "CO")))

        assert customers[9].id in ids  # Acme Corp
        assert customers[15].id in ids  # Cobalt Co
        assert customers[20].id not in ids

    @pytest.mark.asyncio
    async def test_contains_treats_wildcards_literally(self, test_db, owner_id, customers):
        ids = await RuleEvaluator(test_db).evaluate(owner_id, rules(("name", "contains", "%")))

        assert ids == []

    @pytest.mark.asyncio
    async def test_comparison_operators(self, test_db, owner_id, customers):
        evaluator = RuleEvaluator(test_db)

        assert set(await evaluator.evaluate(owner_id, rules(("purchaseCount", "gt", 15)))) == {
            customers[20].id, customers[21].id
        }
        assert set(await evaluator.evaluate(owner_id, rules(("purchaseCount", "gte", 15)))) == {
            customers[15].id, customers[20].id, customers[21].id
        }
        assert set(await evaluator.evaluate(owner_id, rules(("purchaseCount", "lt", 10)))) == {customers[9].id}
        assert set(await evaluator.evaluate(owner_id, rules(("purchaseCount", "lte", 10)))) == {
            customers[9].id, customers[10].id
        }

    @pytest.mark.asyncio
    async def test_eq_and_neq(self, test_db, owner_id, customers):
        evaluator = RuleEvaluator(test_db)

        assert await evaluator.evaluate(owner_id, rules(("city", "eq", "Toronto"))) == [customers[21].id]
        assert customers[21].id not in await evaluator.evaluate(owner_id, rules(("city", "neq", "Toronto")))

    @pytest.mark.asyncio
    async def test_in_accepts_list_and_scalar(self, test_db, owner_id, customers):
        evaluator = RuleEvaluator(test_db)

        listed = await evaluator.evaluate(owner_id, rules(("city", "in", ["Dallas", "Houston"])))
        scalar = await evaluator.evaluate(owner_id, rules(("city", "in", "Dallas")))

        assert set(listed) == {customers[10].id, customers[20].id}
        assert scalar == [customers[10].id]

    @pytest.mark.asyncio
    async def test_or_conditions(self, test_db, owner_id, customers):
        criteria = rules(("city", "eq", "Toronto"), ("purchaseCount", "lt", 10), conditions="OR")

        ids = await RuleEvaluator(test_db).evaluate(owner_id, criteria)

        assert set(ids) == {customers[9].id, customers[21].id}

    @pytest.mark.asyncio
    async def test_and_conditions(self, test_db, owner_id, customers):
        criteria = rules(("city", "eq", "Austin"), ("purchaseCount", "gt", 10))

        ids = await RuleEvaluator(test_db).evaluate(owner_id, criteria)

        assert ids == [customers[15].id]

    @pytest.mark.asyncio
    async def test_empty_rules(self, test_db, owner_id, customers):
        """Empty AND matches every active customer; empty OR matches none."""
        evaluator = RuleEvaluator(test_db)

        everyone = await evaluator.evaluate(owner_id, RuleCriteria(rules=[], conditions="AND"))
        nobody = await evaluator.evaluate(owner_id, RuleCriteria(rules=[], conditions="OR"))

        assert set(everyone) == {c.id for c in customers.values()}
        assert nobody == []

    @pytest.mark.asyncio
    async def test_date_values_accept_iso_strings(self, test_db, owner_id, customers):
        cutoff = (utc_now() - timedelta(days=12)).isoformat() + "Z"

        ids = await RuleEvaluator(test_db).evaluate(owner_id, rules(("lastPurchase", "gte", cutoff)))

        assert set(ids) == {customers[9].id, customers[10].id}

    @pytest.mark.asyncio
    async def test_snake_case_field_names(self, test_db, owner_id, customers):
        ids = await RuleEvaluator(test_db).evaluate(owner_id, rules(("total_purchases", "gte", 2000)))

        assert set(ids) == {customers[20].id, customers[21].id}

    @pytest.mark.asyncio
    async def test_numeric_strings_are_coerced(self, test_db, owner_id, customers):
        ids = await RuleEvaluator(test_db).evaluate(owner_id, rules(("totalPurchases", "gte", "2000")))

        assert set(ids) == {customers[20].id, customers[21].id}

    @pytest.mark.asyncio
    async def test_unknown_operator_matches_all_when_not_strict(self, test_db, owner_id, customers):
        evaluator = RuleEvaluator(test_db, strict_operators=False)

        ids = await evaluator.evaluate(owner_id, rules(("purchaseCount", "approx", 10)))

        assert len(ids) == 5


class TestRuleValidation:
    """Criteria rejected before evaluation."""

    def test_unknown_operator_rejected_when_strict(self):
        with pytest.raises(ValidationError) as exc_info:
            RuleEvaluator().validate(rules(("purchaseCount", "approx", 10)))

        assert exc_info.value.status_code == 422
        assert "approx" in str(exc_info.value)

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationError):
            RuleEvaluator().validate(rules(("password", "eq", "x")))

    def test_between_requires_pair(self):
        with pytest.raises(ValidationError):
            RuleEvaluator().validate(rules(("purchaseCount", "between", [10])))
        with pytest.raises(ValidationError):
            RuleEvaluator().validate(rules(("purchaseCount", "between", 10)))

    def test_contains_requires_text_field(self):
        with pytest.raises(ValidationError):
            RuleEvaluator().validate(rules(("purchaseCount", "contains", "1")))

    def test_invalid_date_rejected(self):
        with pytest.raises(ValidationError):
            RuleEvaluator().validate(rules(("lastPurchase", "gte", "last tuesday")))

    def test_operator_is_case_insensitive(self):
        RuleEvaluator().validate(rules(("purchaseCount", "GTE", 1)))

    @pytest.mark.parametrize(
        "rule",
        [
            ("totalPurchases", "gte", [1, 2]),
            ("totalPurchases", "eq", {"amount": 1}),
            ("purchaseCount", "in", [[1, 2], 3]),
            ("purchaseCount", "between", [[1], [2]]),
            ("city", "neq", ["Austin"]),
            ("lastPurchase", "lt", {"days": 30}),
        ],
    )
    def test_collection_values_rejected_where_one_value_expected(self, rule):
        with pytest.raises(ValidationError) as exc_info:
            RuleEvaluator().validate(rules(rule))

        assert exc_info.value.status_code == 422

    def test_non_numeric_values_rejected_on_number_fields(self):
        with pytest.raises(ValidationError):
            RuleEvaluator().validate(rules(("purchaseCount", "gt", "lots")))
        with pytest.raises(ValidationError):
            RuleEvaluator().validate(rules(("totalPurchases", "eq", True)))

    def test_invalid_boolean_rejected(self):
        with pytest.raises(ValidationError):
            RuleEvaluator().validate(rules(("isActive", "eq", "maybe")))


class TestBuilderMetadata:
    """Field and operator listings for the rule builder."""

    def test_available_fields(self):
        fields = RuleEvaluator().get_available_fields()
        names = [f["name"] for f in fields]

        assert "totalPurchases" in names
        assert "lastPurchase" in names
        assert len(names) == 12
        assert all({"name", "display_name", "data_type", "description"} <= set(f) for f in fields)

    def test_operators_filtered_by_type(self):
        string_ops = [op["name"] for op in RuleEvaluator().get_available_operators("string")]
        date_ops = [op["name"] for op in RuleEvaluator().get_available_operators("date")]

        assert "contains" in string_ops
        assert "between" not in string_ops
        assert "between" in date_ops
        assert "contains" not in date_ops

    def test_all_operators(self):
        assert len(RuleEvaluator().get_available_operators()) == 9
