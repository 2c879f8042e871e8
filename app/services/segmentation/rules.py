"""
Rule Evaluator

Evaluates rule-based segment criteria against an owner's active customers.

Rule format:
{
    "conditions": "AND" | "OR",
    "rules": [
        {"field": "totalPurchases", "operator": "gte", "value": 1000},
        {"field": "city", "operator": "in", "value": ["Austin", "Dallas"]},
        {"field": "lastPurchase", "operator": "between", "value": ["2026-01-01", "2026-03-31"]}
    ]
}

OPERATORS SUPPORTED:
- eq, neq
- gt, gte, lt, lte (numbers and dates)
- contains (case-insensitive substring)
- in (value list)
- between (inclusive [low, high])

Fields may be given in camelCase (as the segment builder sends them) or as
the snake_case column name.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, or_, select, true, false
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import Select

from app.config import settings
from app.exceptions import ValidationError
from app.models.customer import Customer
from app.schemas.segment import ConditionMode, RuleCriteria, RuleOperator, SegmentRule
from app.utils.dates import parse_datetime

logger = logging.getLogger(__name__)


@dataclass
class FieldDefinition:
    """Definition of a customer field that can be used in segment rules."""

    name: str
    display_name: str
    data_type: str  # 'string', 'number', 'date', 'boolean'
    column: str
    description: str = ""


class RuleEvaluator:
    """
    Turns rule criteria into a SQLAlchemy filter over customers.

    Unknown operators are rejected with a ValidationError when
    ``strict_operators`` is on (the default, see SEGMENT_STRICT_RULE_OPERATORS);
    otherwise they filter nothing out and a warning is logged.
    """

    FIELD_DEFINITIONS: Dict[str, FieldDefinition] = {
        "name": FieldDefinition("name", "Name", "string", "name", "Customer name"),
        "email": FieldDefinition("email", "Email", "string", "email", "Customer email"),
        "phone": FieldDefinition("phone", "Phone", "string", "phone", "Customer phone number"),
        "company": FieldDefinition("company", "Company", "string", "company", "Company name"),
        "city": FieldDefinition("city", "City", "string", "city", "Customer city"),
        "country": FieldDefinition("country", "Country", "string", "country", "Customer country"),
        "totalPurchases": FieldDefinition(
            "totalPurchases", "Total Purchases", "number", "total_purchases", "Lifetime purchase amount"
        ),
        "totalQuantity": FieldDefinition(
            "totalQuantity", "Total Quantity", "number", "total_quantity", "Units purchased"
        ),
        "purchaseCount": FieldDefinition(
            "purchaseCount", "Purchase Count", "number", "purchase_count", "Number of purchases"
        ),
        "lastPurchase": FieldDefinition(
            "lastPurchase", "Last Purchase Date", "date", "last_purchase", "Date of most recent purchase"
        ),
        "createdAt": FieldDefinition(
            "createdAt", "Customer Since", "date", "created_at", "When the customer was created"
        ),
        "isActive": FieldDefinition("isActive", "Is Active", "boolean", "is_active", "Whether customer is active"),
    }

    # snake_case column names resolve to the same definitions
    FIELD_ALIASES: Dict[str, str] = {
        definition.column: key for key, definition in FIELD_DEFINITIONS.items()
    }

    OPERATORS: List[Dict[str, Any]] = [
        {"name": "eq", "display": "Equals", "types": ["string", "number", "date", "boolean"]},
        {"name": "neq", "display": "Not Equals", "types": ["string", "number", "date", "boolean"]},
        {"name": "gt", "display": "Greater Than", "types": ["number", "date"]},
        {"name": "gte", "display": "Greater Than or Equal", "types": ["number", "date"]},
        {"name": "lt", "display": "Less Than", "types": ["number", "date"]},
        {"name": "lte", "display": "Less Than or Equal", "types": ["number", "date"]},
        {"name": "contains", "display": "Contains", "types": ["string"]},
        {"name": "in", "display": "In List", "types": ["string", "number"]},
        {"name": "between", "display": "Between", "types": ["number", "date"]},
    ]

    def __init__(self, db: Optional[AsyncSession] = None, strict_operators: Optional[bool] = None):
        self.db = db
        self.strict_operators = (
            settings.SEGMENT_STRICT_RULE_OPERATORS if strict_operators is None else strict_operators
        )

    # =========================================================================
    # VALIDATION
    # =========================================================================

    def resolve_field(self, field_name: str) -> FieldDefinition:
        key = self.FIELD_ALIASES.get(field_name, field_name)
        field_def = self.FIELD_DEFINITIONS.get(key)
        if field_def is None:
            raise ValidationError(
                f"Unknown segment rule field '{field_name}'",
                errors=[{"field": "rules.field", "message": f"unknown field '{field_name}'", "type": "value_error"}],
            )
        return field_def

    def validate(self, criteria: RuleCriteria) -> None:
        """Reject criteria that cannot be evaluated, before anything is written."""
        for rule in criteria.rules:
            self._build_single_condition(rule)

    # =========================================================================
    # QUERY BUILDING
    # =========================================================================

    def build_conditions(self, criteria: RuleCriteria) -> Any:
        """
        Combine the rule predicates with AND/OR.

        An empty AND matches every customer and an empty OR matches none.
        """
        conditions = [self._build_single_condition(rule) for rule in criteria.rules]

        if criteria.conditions == ConditionMode.OR:
            return or_(*conditions) if conditions else false()
        return and_(*conditions) if conditions else true()

    def build_query(self, owner_id: str, criteria: RuleCriteria) -> Select:
        return (
            select(Customer.id)
            .where(
                Customer.owner_id == owner_id,
                Customer.is_active == True,  # noqa: E712
                self.build_conditions(criteria),
            )
            .order_by(Customer.created_at, Customer.id)
        )

    async def evaluate(self, owner_id: str, criteria: RuleCriteria) -> List[str]:
        """Return ids of the owner's active customers matching ``criteria``."""
        if self.db is None:
            raise RuntimeError("RuleEvaluator needs a database session to evaluate rules")
        result = await self.db.execute(self.build_query(owner_id, criteria))
        return [row[0] for row in result.all()]

    def _build_single_condition(self, rule: SegmentRule) -> Any:
        """Build a SQLAlchemy condition for a single rule."""
        field_def = self.resolve_field(rule.field)
        column = getattr(Customer, field_def.column)
        operator = rule.operator.strip().lower()

        try:
            op = RuleOperator(operator)
        except ValueError:
            if self.strict_operators:
                allowed = ", ".join(o.value for o in RuleOperator)
                raise ValidationError(
                    f"Unknown operator '{rule.operator}' for field '{rule.field}'; expected one of: {allowed}",
                    errors=[{"field": "rules.operator", "message": f"unknown operator '{rule.operator}'", "type": "enum"}],
                )
            logger.warning(
                f"Unknown segment rule operator '{rule.operator}' on field '{rule.field}' ignored (matches all)"
            )
            return true()

        return self._apply_operator(column, op, rule.value, field_def)

    def _apply_operator(self, column: Any, op: RuleOperator, value: Any, field_def: FieldDefinition) -> Any:
        """Apply an operator to a column with proper type handling."""
        data_type = field_def.data_type

        if op == RuleOperator.EQUALS:
            return column == self._coerce(value, data_type)
        elif op == RuleOperator.NOT_EQUALS:
            return column != self._coerce(value, data_type)

        # Comparison operators
        elif op == RuleOperator.GREATER_THAN:
            return column > self._coerce(value, data_type)
        elif op == RuleOperator.GREATER_THAN_OR_EQUALS:
            return column >= self._coerce(value, data_type)
        elif op == RuleOperator.LESS_THAN:
            return column < self._coerce(value, data_type)
        elif op == RuleOperator.LESS_THAN_OR_EQUALS:
            return column <= self._coerce(value, data_type)

        elif op == RuleOperator.BETWEEN:
            if not isinstance(value, (list, tuple)) or len(value) != 2:
                raise ValidationError(
                    f"Operator 'between' on '{field_def.name}' needs a [low, high] pair"
                )
            low, high = (self._coerce(v, data_type) for v in value)
            return and_(column >= low, column <= high)

        # String operators
        elif op == RuleOperator.CONTAINS:
            if data_type != "string":
                raise ValidationError(f"Operator 'contains' is not supported for {data_type} field '{field_def.name}'")
            text = self._coerce(value, "string")
            if text is None:
                raise ValidationError(f"Operator 'contains' on '{field_def.name}' needs a value")
            return column.ilike(f"%{self._escape_like(text)}%", escape="\\")

        # List operators
        elif op == RuleOperator.IN:
            values = value if isinstance(value, (list, tuple, set)) else [value]
            return column.in_([self._coerce(v, data_type) for v in values])

        raise ValidationError(f"Unsupported operator '{op.value}'")

    @staticmethod
    def _escape_like(value: str) -> str:
        return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")

    @staticmethod
    def _coerce(value: Any, data_type: str) -> Any:
        """Convert a single JSON-borne value (often a string from the builder UI) to the column's type."""
        if value is None:
            return None
        if isinstance(value, (list, tuple, set, dict)):
            raise ValidationError(f"Expected a single {data_type} value, got {type(value).__name__} {value!r}")
        if data_type == "date":
            parsed = parse_datetime(value)
            if not isinstance(parsed, datetime):
                raise ValidationError(f"Invalid date value '{value}'")
            return parsed
        if data_type == "number":
            if isinstance(value, bool):
                raise ValidationError(f"Invalid numeric value '{value}'")
            if isinstance(value, (int, float)):
                return value
            if isinstance(value, str):
                try:
                    return float(value)
                except ValueError:
                    pass
            raise ValidationError(f"Invalid numeric value '{value}'")
        if data_type == "boolean":
            if isinstance(value, bool):
                return value
            lowered = str(value).strip().lower()
            if lowered in ("true", "1", "yes"):
                return True
            if lowered in ("false", "0", "no"):
                return False
            raise ValidationError(f"Invalid boolean value '{value}'")
        return str(value)

    # =========================================================================
    # BUILDER METADATA
    # =========================================================================

    def get_available_fields(self) -> List[Dict[str, Any]]:
        """Get all available fields for segment rules."""
        return [
            {
                "name": field_def.name,
                "display_name": field_def.display_name,
                "data_type": field_def.data_type,
                "description": field_def.description,
            }
            for field_def in self.FIELD_DEFINITIONS.values()
        ]

    def get_available_operators(self, data_type: Optional[str] = None) -> List[Dict[str, Any]]:
        """Get available operators, optionally filtered by data type."""
        operators = [dict(op) for op in self.OPERATORS]
        if data_type:
            operators = [op for op in operators if data_type in op["types"]]
        return operators
